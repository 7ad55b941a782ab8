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


"""Splitting of files into fixed-size parts"""

from collections.abc import Iterator

from tuc.core.models import PartRange


def slice_parts(byte_length: int, chunk_size: int) -> Iterator[PartRange]:
    """Yield the parts of a file of `byte_length` bytes in part number order.

    All parts are `chunk_size` bytes long except possibly the last one. A file of
    zero bytes has no parts.
    """
    if byte_length < 0:
        raise ValueError(f"Byte length must not be negative, got {byte_length}.")
    if chunk_size <= 0:
        raise ValueError(f"Chunk size must be positive, got {chunk_size}.")

    for part_number, start in enumerate(range(0, byte_length, chunk_size), start=1):
        yield PartRange(
            part_number=part_number,
            start=start,
            end=min(start + chunk_size, byte_length),
        )


def get_part(part_number: int, *, byte_length: int, chunk_size: int) -> PartRange:
    """Return the range of a single part without slicing the whole file"""
    start = (part_number - 1) * chunk_size
    if part_number < 1 or start >= byte_length:
        raise IndexError(
            f"Part {part_number} does not exist in a file of {byte_length} bytes."
        )
    return PartRange(
        part_number=part_number,
        start=start,
        end=min(start + chunk_size, byte_length),
    )
