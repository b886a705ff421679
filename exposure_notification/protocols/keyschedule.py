"""
Key schedule of the Exposure Notification protocol

Covers the derivation of all broadcast material from a Temporary Exposure Key
(TEK): the Rolling Proximity Identifier Key (RPIK) and the Rolling Proximity
Identifiers (RPIs) computed from it, and the Associated Encrypted Metadata Key
(AEMK) used to encrypt the metadata broadcast next to each RPI.
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

import datetime
import secrets
from collections import namedtuple

from Cryptodome.Cipher import AES
from Cryptodome.Hash import SHA256
from Cryptodome.Protocol.KDF import HKDF
from Cryptodome.Util import Counter

from exposure_notification.config import (
    LENGTH_KEY,
    LENGTH_METADATA,
    LENGTH_RPI,
    MAX_INTERVAL_NUMBER,
    ROLLING_PERIOD,
    SECONDS_PER_INTERVAL,
)
from exposure_notification.errors import CryptoError


#################################
### GLOBAL PROTOCOL CONSTANTS ###
#################################

#: HKDF info string for the Rolling Proximity Identifier Key
RPIK_INFO = "EN-RPIK".encode("ascii")

#: HKDF info string for the Associated Encrypted Metadata Key
AEMK_INFO = "CT-AEMK".encode("ascii")

#: Prefix of the block that is encrypted into an RPI
RPI_PREFIX = "EN-RPI".encode("ascii")

#: Hash underlying HKDF. Fixed by the protocol
KDF_HASH = SHA256

#: Plaintext metadata, see :func:`encode_metadata`
Metadata = namedtuple("Metadata", ["major", "minor", "tx_power"])


#########################
### UTILITY FUNCTIONS ###
#########################


def _seconds_from_time(time):
    if isinstance(time, datetime.datetime):
        seconds = time.timestamp()
    else:
        seconds = time

    # Checked before truncating, int() rounds toward zero
    if seconds < 0:
        raise ValueError("Time must not be before the UNIX epoch")
    return int(seconds)


def check_length(name, value, length):
    """Raise ValueError unless value is exactly length bytes long"""
    if len(value) != length:
        raise ValueError(
            "{} must be {} bytes, got {} bytes".format(name, length, len(value))
        )


def check_interval(interval):
    """Raise ValueError unless interval is a valid unsigned 32-bit number"""
    if not 0 <= interval <= MAX_INTERVAL_NUMBER:
        raise ValueError("Interval number {} does not fit in 32 bits".format(interval))


def interval_at_offset(rolling_start_number, offset):
    """Return the interval offset intervals after rolling_start_number

    Interval numbers are unsigned 32-bit integers, so the last window before
    2**32 wraps around to interval 0.
    """
    check_interval(rolling_start_number)
    return (rolling_start_number + offset) & MAX_INTERVAL_NUMBER


def interval_number_from_time(time):
    """Compute the ENIntervalNumber given a time

    Computes the number of 10 minute intervals since the UNIX Epoch.

    Args:
        time (:obj:`datetime.datetime` or int): A date-time instance, or seconds
            since UNIX epoch

    Returns:
        int: The interval number

    Raises:
        ValueError: If time lies before the UNIX epoch
    """
    interval = _seconds_from_time(time) // SECONDS_PER_INTERVAL
    check_interval(interval)
    return interval


def rolling_start_number_from_interval(interval, rolling_period=ROLLING_PERIOD):
    """Return the first interval of the key validity window containing interval"""
    check_interval(interval)
    return (interval // rolling_period) * rolling_period


def rolling_start_number_from_time(time, rolling_period=ROLLING_PERIOD):
    """Return the rolling start number of a TEK generated at time

    All devices roll their keys at the same moment: at the beginning of an
    interval whose number is a multiple of the rolling period.

    Args:
        time (:obj:`datetime.datetime` or int): A date-time instance, or seconds
            since UNIX epoch

    Returns:
        int: The interval number at which the key validity window starts
    """
    return rolling_start_number_from_interval(
        interval_number_from_time(time), rolling_period
    )


#########################################
### BASIC CRYPTOGRAPHIC FUNCTIONALITY ###
#########################################


def _aes(key, mode, **kwargs):
    try:
        return AES.new(key, mode, **kwargs)
    except ValueError as err:
        raise CryptoError("AES rejected a {}-byte key".format(len(key))) from err


def generate_new_tek():
    """Returns a fresh random Temporary Exposure Key

    Raises:
        CryptoError: If the operating system cannot provide randomness
    """
    try:
        return secrets.token_bytes(LENGTH_KEY)
    except (OSError, NotImplementedError) as err:
        raise CryptoError("No secure random source available") from err


def derive_key(key, info):
    """Derive a 16-byte key from a TEK with HKDF-SHA256

    No salt is used, so HKDF extracts with an all-zero salt.

    Args:
        key (byte array): A 16-byte Temporary Exposure Key
        info (byte array): The HKDF context string

    Returns:
        byte array: The derived 16-byte key

    Raises:
        CryptoError: If HKDF fails to produce the key
    """
    check_length("Temporary Exposure Key", key, LENGTH_KEY)

    try:
        derived = HKDF(key, LENGTH_KEY, None, KDF_HASH, context=info)
    except ValueError as err:
        raise CryptoError("HKDF could not derive a key") from err

    if len(derived) != LENGTH_KEY:
        raise CryptoError("HKDF returned {} bytes".format(len(derived)))
    return derived


def derive_rpik(tek):
    """Derive the Rolling Proximity Identifier Key of a TEK"""
    return derive_key(tek, RPIK_INFO)


def derive_aemk(tek):
    """Derive the Associated Encrypted Metadata Key of a TEK"""
    return derive_key(tek, AEMK_INFO)


def padded_data_for_interval(interval):
    """Build the block that is encrypted into the RPI of an interval

    Encoding is as follows:

      * Bytes 0-5 are the ASCII string "EN-RPI"
      * Bytes 6-11 are zero
      * Bytes 12-15 are the interval number in LittleEndian order

    Args:
        interval (int): An ENIntervalNumber
    """
    check_interval(interval)
    return RPI_PREFIX + bytes(6) + interval.to_bytes(4, "little")


def rpi_for_interval(rpik, interval):
    """Compute the Rolling Proximity Identifier for an interval

    Args:
        rpik (byte array): A 16-byte Rolling Proximity Identifier Key
        interval (int): The ENIntervalNumber of the broadcast

    Returns:
        byte array: The 16-byte RPI
    """
    check_length("RPIK", rpik, LENGTH_KEY)

    # Only ever a single block, so ECB does not chain anything
    cipher = _aes(rpik, AES.MODE_ECB)
    return cipher.encrypt(padded_data_for_interval(interval))


def rpis_for_window(rpik, rolling_start_number, rolling_period=ROLLING_PERIOD):
    """Generates the list of RPIs for a key validity window

    Args:
        rpik (byte array): A 16-byte Rolling Proximity Identifier Key
        rolling_start_number (int): First interval of the window
        rolling_period (int, optional): Number of intervals in the window

    Returns:
        list of byte arrays: The RPI of each interval, in order
    """
    check_length("RPIK", rpik, LENGTH_KEY)

    cipher = _aes(rpik, AES.MODE_ECB)
    return [
        cipher.encrypt(
            padded_data_for_interval(interval_at_offset(rolling_start_number, offset))
        )
        for offset in range(rolling_period)
    ]


def xor_metadata(aemk, rpi, data):
    """Encrypt or decrypt metadata bound to an RPI

    Runs AES-128 in CTR mode using the RPI as the initial counter block. The
    operation is its own inverse.

    Args:
        aemk (byte array): A 16-byte Associated Encrypted Metadata Key
        rpi (byte array): The 16-byte RPI the metadata is broadcast with
        data (byte array): Plaintext or ciphertext metadata

    Returns:
        byte array: The transformed metadata, of the same length as data

    Raises:
        ValueError: If the AEMK or RPI have the wrong length
        TypeError: If data is not a byte array
    """
    check_length("AEMK", aemk, LENGTH_KEY)
    check_length("RPI", rpi, LENGTH_RPI)
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise TypeError("Metadata must be a byte array, got {}".format(type(data)))

    counter = Counter.new(128, initial_value=int.from_bytes(rpi, "big"))
    cipher = _aes(aemk, AES.MODE_CTR, counter=counter)
    return cipher.encrypt(data)


#########################
### METADATA ENCODING ###
#########################


def encode_metadata(tx_power, major=1, minor=0):
    """Encode the plaintext metadata of a broadcast

    Layout as in the Bluetooth specification of Exposure Notification:

      * Byte 0 is the version: major in bits 7-6, minor in bits 5-4
      * Byte 1 is the transmit power level in dBm as a signed byte
      * Bytes 2-3 are reserved and zero

    Args:
        tx_power (int): Transmit power level in dBm
        major (int, optional): Major protocol version. Default: 1
        minor (int, optional): Minor protocol version. Default: 0

    Returns:
        byte array: The 4-byte plaintext metadata
    """
    if not (0 <= major <= 3 and 0 <= minor <= 3):
        raise ValueError("Version {}.{} cannot be encoded".format(major, minor))
    if not -128 <= tx_power <= 127:
        raise ValueError("Transmit power {} dBm out of range".format(tx_power))

    version = (major << 6) | (minor << 4)
    return bytes([version]) + tx_power.to_bytes(1, "big", signed=True) + bytes(2)


def decode_metadata(data):
    """Decode plaintext metadata, see :func:`encode_metadata`

    Returns:
        :obj:`Metadata`: The version and transmit power
    """
    check_length("Metadata", data, LENGTH_METADATA)

    version = data[0]
    tx_power = int.from_bytes(data[1:2], "big", signed=True)
    return Metadata((version >> 6) & 0x3, (version >> 4) & 0x3, tx_power)
