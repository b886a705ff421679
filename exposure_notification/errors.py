"""
Exceptions raised by the Exposure Notification key schedule.
"""

__copyright__ = """
    Copyright 2020 EPFL

    Licensed under the Apache License, Version 2.0 (the "License");
    you may not use this file except in compliance with the License.
    You may obtain a copy of the License at

        http://www.apache.org/licenses/LICENSE-2.0

    Unless required by applicable law or agreed to in writing, software
    distributed under the License is distributed on an "AS IS" BASIS,
    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
    See the License for the specific language governing permissions and
    limitations under the License.
"""
__license__ = "Apache 2.0"


class CryptoError(RuntimeError):
    """A cryptographic primitive failed on well-formed input.

    Raised when the random source is unavailable, when the block cipher
    rejects a key, or when key derivation cannot produce its output. These
    failures cannot be fixed by retrying with the same input and should make
    the hosting application shut down. A negative matching result is never
    reported through this exception.
    """
