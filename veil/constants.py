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

# Size in bytes of a compressed secp256k1 point, used for commitments and proof points
COMMITMENT_SIZE = 33

# Size in bytes of every digest handled by the accumulator (sha256)
DIGEST_SIZE = 32

# Size in bytes of a serialized scalar
SCALAR_SIZE = 32

# Upper bound for the range proof bit width. Keeps the weighted sum of bit commitments far below the group order,
# so a proof for `n` bits can never wrap around and "prove" a negative amount.
MAX_RANGE_PROOF_BIT_WIDTH = 128

# Version of the transaction record struct, bumped whenever the id preimage layout changes
TX_RECORD_VERSION = 1
