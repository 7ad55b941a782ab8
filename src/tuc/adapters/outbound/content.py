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


"""Sources for the raw content of files selected for upload"""

from pathlib import Path

import aiofiles

from tuc.ports.outbound.content import ContentSource

__all__ = ["InMemorySource", "LocalFileSource"]


class LocalFileSource(ContentSource):
    """Content of a file on the local file system, read part by part"""

    def __init__(self, path: Path):
        self._path = path
        self._size = path.stat().st_size

    @property
    def path(self) -> Path:
        return self._path

    @property
    def name(self) -> str:
        return self._path.name

    @property
    def size(self) -> int:
        return self._size

    async def read(self, *, start: int, end: int) -> bytes:
        """Read the byte range `[start, end)`.

        Raises `OSError` if the file can't be read or got shorter since selection.
        """
        async with aiofiles.open(self._path, "rb") as file:
            await file.seek(start)
            data = await file.read(end - start)
        if len(data) != end - start:
            raise OSError(
                f"Expected {end - start} bytes at offset {start} of {self._path},"
                + f" got {len(data)}."
            )
        return data


class InMemorySource(ContentSource):
    """Content already held in memory"""

    def __init__(self, *, name: str, data: bytes):
        self._name = name
        self._data = data

    @property
    def name(self) -> str:
        return self._name

    @property
    def size(self) -> int:
        return len(self._data)

    async def read(self, *, start: int, end: int) -> bytes:
        """Read the byte range `[start, end)`"""
        return self._data[start:end]
