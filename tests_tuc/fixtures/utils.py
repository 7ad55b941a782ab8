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


"""General testing utilities"""

from pathlib import Path

from tuc.adapters.outbound.content import InMemorySource

BASE_DIR = Path(__file__).parent.resolve()

PATTERN = bytes(range(251))


def make_content(size: int, *, offset: int = 0) -> bytes:
    """Generate `size` bytes that differ from part to part"""
    repeated = PATTERN * (size // len(PATTERN) + 2)
    start = offset % len(PATTERN)
    return repeated[start : start + size]


def make_source(name: str, size: int, *, offset: int = 0) -> InMemorySource:
    """Generate an in-memory file with the given name and size"""
    return InMemorySource(name=name, data=make_content(size, offset=offset))
