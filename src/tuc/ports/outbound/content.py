# Copyright 2021 - 2025 Universität Tübingen, DKFZ, EMBL, and Universität zu Köln
# for the German Human Genome-Phenome Archive (GHGA)
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.


"""Interface for the raw content of a file selected for upload"""

from abc import ABC, abstractmethod

__all__ = ["ContentSource"]


class ContentSource(ABC):
    """A handle on the bytes of a selected file.

    Handles live in memory only. After a restart the content has to be selected
    again before an interrupted upload can continue.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The file name as reported to the server"""
        ...

    @property
    @abstractmethod
    def size(self) -> int:
        """The length of the content in bytes"""
        ...

    @abstractmethod
    async def read(self, *, start: int, end: int) -> bytes:
        """Read the byte range `[start, end)`"""
        ...

    def matches(self, *, name: str, size: int) -> bool:
        """Tell whether this content is plausibly the file that was selected before"""
        return self.name == name and self.size == size
