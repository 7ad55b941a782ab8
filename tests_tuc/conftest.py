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


"""Set up session-scope fixtures for tests."""

import pytest

from tests_tuc.fixtures.config import get_config
from tests_tuc.fixtures.joint import rig_fixture  # noqa: F401
from tuc.config import Config


@pytest.fixture(name="config")
def config_fixture(tmp_path) -> Config:
    """Generate config from the test yaml, keeping the upload state in a temp dir"""
    return get_config(state_file=tmp_path / "upload_state.json")
