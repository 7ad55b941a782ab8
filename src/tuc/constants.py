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


"""Constants used throughout the package"""

SERVICE_NAME = "tuc"

MiB = 1024**2
GiB = 1024**3

DEFAULT_CHUNK_SIZE = 5 * MiB
MAX_FILE_SIZE = 15 * GiB
DEFAULT_PART_CONCURRENCY = 4
DEFAULT_PART_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 1.0  # seconds, doubled on each further attempt
DEFAULT_PROGRESS_TICK_SIZE = 64 * 1024
