# Copyright 2024 Hathor Labs
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import os

import pytest

from veil.conf import UNITTESTS_SETTINGS_FILEPATH
from veil.conf.settings import VeilSettings

os.environ['VEIL_CONFIG_YAML'] = os.environ.get('VEIL_TEST_CONFIG_YAML', UNITTESTS_SETTINGS_FILEPATH)

FIXED_TIMESTAMP = 1_700_000_000


@pytest.fixture
def settings() -> VeilSettings:
    return VeilSettings.from_yaml(filepath=UNITTESTS_SETTINGS_FILEPATH)


@pytest.fixture
def engine(settings: VeilSettings):
    from veil.engine import TransactionEngine
    return TransactionEngine(settings=settings, clock=lambda: FIXED_TIMESTAMP)
