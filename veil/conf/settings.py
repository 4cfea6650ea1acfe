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

from __future__ import annotations

from pathlib import Path
from typing import Any, Union

import yaml
from pydantic import field_validator

from veil.conf import DEFAULT_SETTINGS_FILEPATH
from veil.constants import MAX_RANGE_PROOF_BIT_WIDTH, TX_RECORD_VERSION
from veil.utils.pydantic import BaseModel


class VeilSettings(BaseModel):
    # Name of the network: "mainnet", "unittests", ...
    NETWORK_NAME: str

    # Public bit width of range proofs, fixed per deployment
    RANGE_PROOF_BIT_WIDTH: int = 64

    # Maximum number of inputs and outputs on a single transaction
    MAX_TX_INPUTS: int = 16
    MAX_TX_OUTPUTS: int = 16

    # Fee policy used when a transaction is created without an explicit fee
    MIN_FEE: int = 1
    FEE_PER_MILLE: int = 1

    # Version written into every transaction record
    TX_VERSION: int = TX_RECORD_VERSION

    @field_validator('RANGE_PROOF_BIT_WIDTH')
    @classmethod
    def _validate_bit_width(cls, bit_width: int) -> int:
        if not 1 <= bit_width <= MAX_RANGE_PROOF_BIT_WIDTH:
            raise ValueError(f'RANGE_PROOF_BIT_WIDTH must be in [1, {MAX_RANGE_PROOF_BIT_WIDTH}], got {bit_width}')
        return bit_width

    @field_validator('MAX_TX_INPUTS', 'MAX_TX_OUTPUTS')
    @classmethod
    def _validate_max_entries(cls, value: int) -> int:
        if value < 1:
            raise ValueError(f'a transaction must allow at least one entry, got {value}')
        return value

    @field_validator('MIN_FEE', 'FEE_PER_MILLE')
    @classmethod
    def _validate_fee_parameter(cls, value: int) -> int:
        if value < 0:
            raise ValueError(f'fee parameters cannot be negative, got {value}')
        return value

    def calculate_fee(self, amount: int) -> int:
        """Default fee for moving `amount`: a per-mille rate with a floor of MIN_FEE."""
        return max(self.MIN_FEE, amount * self.FEE_PER_MILLE // 1000)

    @classmethod
    def from_yaml(cls, *, filepath: Union[Path, str]) -> VeilSettings:
        """Load a settings file on top of `default.yml`, so a network file only lists what it changes."""
        values = _read_yaml(DEFAULT_SETTINGS_FILEPATH)
        values.update(_read_yaml(filepath))
        return cls.model_validate(values)


def _read_yaml(filepath: Union[Path, str]) -> dict[str, Any]:
    with open(filepath, 'r') as file:
        contents = yaml.safe_load(file)

    if contents is None:
        return {}
    if not isinstance(contents, dict):
        raise ValueError(f"'{filepath}' cannot be parsed as a dictionary")
    return contents
