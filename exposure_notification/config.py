"""
Global protocol constants of the Exposure Notification key schedule.
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


#: For how many days we should store keys and observations
RETENTION_PERIOD = 14

#: The length of an interval in minutes
INTERVAL_LENGTH = 10

#: Seconds in a single interval
SECONDS_PER_INTERVAL = INTERVAL_LENGTH * 60

#: Number of intervals a Temporary Exposure Key is valid for (24 hours)
ROLLING_PERIOD = 144

#: Seconds in a UNIX Epoch day
SECONDS_PER_DAY = 24 * 60 * 60

#: Length of a Temporary Exposure Key and of the keys derived from it, in bytes
LENGTH_KEY = 16

#: Length of a Rolling Proximity Identifier in bytes
LENGTH_RPI = 16

#: Length of the plaintext metadata broadcast next to an RPI
LENGTH_METADATA = 4

#: Interval numbers are encoded as unsigned 32-bit integers
MAX_INTERVAL_NUMBER = 2 ** 32 - 1

#: How far (in intervals) an observation may lie from the interval of the
#: matched RPI before it is rejected as a replay (2 hours)
RPI_TIME_TOLERANCE = 12

#: Transmit power level in dBm advertised in the metadata by default
DEFAULT_TX_POWER = 8
