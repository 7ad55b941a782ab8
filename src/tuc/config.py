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


"""Config Parameter Modeling and Parsing"""

from hexkit.config import config_from_yaml
from hexkit.log import LoggingConfig
from pydantic import Field

from tuc.adapters.outbound.http.api_calls import HttpApiConfig
from tuc.adapters.outbound.state_store import StateStoreConfig
from tuc.constants import SERVICE_NAME
from tuc.core.orchestrator import UploadConfig


@config_from_yaml(prefix=SERVICE_NAME)
class Config(
    UploadConfig,
    HttpApiConfig,
    StateStoreConfig,
    LoggingConfig,
):
    """Config parameters and their defaults."""

    service_name: str = SERVICE_NAME
    service_instance_id: str = Field(
        default="local",
        description="A string that uniquely identifies this client instance in logs.",
        examples=["local", "laptop-1"],
    )
