"""
Matching of published Diagnosis Keys against observed broadcasts
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
import hmac
import logging
from collections import Counter, namedtuple
from concurrent.futures import ThreadPoolExecutor

from cuckoo.filter import CuckooFilter

from exposure_notification.config import (
    DEFAULT_TX_POWER,
    LENGTH_KEY,
    LENGTH_RPI,
    RETENTION_PERIOD,
    ROLLING_PERIOD,
    RPI_TIME_TOLERANCE,
)
from exposure_notification.protocols.keyschedule import (
    check_length,
    derive_aemk,
    derive_rpik,
    encode_metadata,
    generate_new_tek,
    interval_at_offset,
    interval_number_from_time,
    rolling_start_number_from_time,
    rpi_for_interval,
    rpis_for_window,
    xor_metadata,
)

logger = logging.getLogger(__name__)


#################################
### GLOBAL PROTOCOL CONSTANTS ###
#################################

#: Length of a batch (2 hours)
SECONDS_PER_BATCH = 2 * 60 * 60

#: FPR for CuckooFilter
CUCKOO_FPR = 2 ** -42

#: A published TEK and the first interval for which it is valid
DiagnosisKey = namedtuple("DiagnosisKey", ["key", "rolling_start_number"])

#: Result of a successful match: interval offset within the window, and metadata
Match = namedtuple("Match", ["offset", "metadata"])

#: An RPI and AEM received over Bluetooth at the given interval
Observation = namedtuple("Observation", ["rpi", "aem", "interval"])

#: An observation attributed to a Diagnosis Key
Exposure = namedtuple(
    "Exposure", ["diagnosis_key", "observation", "offset", "metadata"]
)


#########################
### UTILITY FUNCTIONS ###
#########################


def batch_start_from_time(time):
    """Return the first Unix epoch second of the batch corresponding to time

    Args:
        datetime (obj:datetime.datetime): A datetime

    Returns:
        The first Unix epoch second of that batch
    """
    return (int(time.timestamp()) // SECONDS_PER_BATCH) * SECONDS_PER_BATCH


################
### MATCHING ###
################


def try_match(diagnosis_key, rpi, aem, rolling_period=ROLLING_PERIOD):
    """Check whether an observed broadcast was sent with a Diagnosis Key

    Regenerates the RPIs of the key's validity window in order, and compares
    each of them to the observed RPI in constant time. On the first match the
    AEM is decrypted with the key's AEMK.

    Args:
        diagnosis_key (:obj:`DiagnosisKey`): A published key
        rpi (byte array): The observed 16-byte RPI
        aem (byte array): The observed encrypted metadata
        rolling_period (int, optional): Number of intervals to scan

    Returns:
        :obj:`Match` or None: The offset of the matching interval from the
            rolling start number and the decrypted metadata, or None when the
            broadcast does not belong to this key

    Raises:
        ValueError: If the key or RPI have the wrong length
        CryptoError: If a cryptographic primitive fails
    """
    tek, rolling_start_number = diagnosis_key
    check_length("RPI", rpi, LENGTH_RPI)

    rpik = derive_rpik(tek)
    aemk = derive_aemk(tek)

    for offset in range(rolling_period):
        candidate = rpi_for_interval(
            rpik, interval_at_offset(rolling_start_number, offset)
        )
        if hmac.compare_digest(candidate, rpi):
            return Match(offset, xor_metadata(aemk, candidate, aem))

    return None


def match_batch(diagnosis_keys, observations, max_workers=None):
    """Match every Diagnosis Key against every observation

    The pairs are independent, so they are evaluated on a thread pool.

    Args:
        diagnosis_keys (iterable of :obj:`DiagnosisKey`): Published keys
        observations (iterable of :obj:`Observation`): Observed broadcasts
        max_workers (int, optional): Size of the thread pool

    Returns:
        list of (diagnosis_key, observation, match): One entry per matching
            pair, in the order of the input pairs
    """
    observations = list(observations)
    pairs = [
        (diagnosis_key, index, observation)
        for diagnosis_key in diagnosis_keys
        for index, observation in enumerate(observations)
    ]
    if not pairs:
        return []

    def evaluate(pair):
        diagnosis_key, _, observation = pair
        return try_match(diagnosis_key, observation.rpi, observation.aem)

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        matches = list(executor.map(evaluate, pairs))

    positives = [
        (pair, match) for pair, match in zip(pairs, matches) if match is not None
    ]
    results = [
        (diagnosis_key, observation, match)
        for (diagnosis_key, _, observation), match in positives
    ]

    per_observation = Counter(index for ((_, index, _), _) in positives)
    for index, count in per_observation.items():
        if count > 1:
            logger.warning(
                "Observation %d (RPI %s) matches %d diagnosis keys",
                index,
                observations[index].rpi.hex(),
                count,
            )

    logger.debug("Matched %d pairs, %d positive", len(pairs), len(results))
    return results


############################################################
### TYING CRYPTO FUNCTIONS TOGETHER FOR TRACING/MATCHING ###
############################################################


class ExposureDataBatch:
    """
    Simple representation of a batch of Diagnosis Keys that is downloaded from
    the backend server to the phone at regular intervals.
    """

    def __init__(self, diagnosis_keys, release_time=None):
        """Create a published batch of Diagnosis Keys

        Args:
            diagnosis_keys ([:obj:`DiagnosisKey`]): List of TEKs of diagnosed
                people and the corresponding rolling start numbers.
            release_time (int, optional): Release time in seconds since UNIX Epoch
                when missing, defaults to current time

        Raises:
            ValueError: if the release_time is not aligned to a batch boundary
        """
        diagnosis_keys = list(diagnosis_keys)

        if release_time is None:
            release_time = batch_start_from_time(datetime.datetime.now())

        if release_time % SECONDS_PER_BATCH != 0:
            raise ValueError("Release time must be batch-aligned")

        for diagnosis_key in diagnosis_keys:
            check_length("Temporary Exposure Key", diagnosis_key.key, LENGTH_KEY)

        self.release_time = release_time
        self.diagnosis_keys = diagnosis_keys


class ExposureTracer:
    """Simple reference implementation of the exposure tracer.

    This class shows how the exposure notification part of a smartphone app
    would operate.

    *Simplification* This class simplifies recording of observations and
    computing the final risk score. Observations are represented by the
    corresponding RPI and AEM, and we omit proximity metrics such as duration
    and signal strength. Risk scoring is left to the caller, which receives
    the list of attributed observations.

    A note on internal data representation:
     * All internal times are ENIntervalNumbers (see
       :func:`interval_number_from_time`)
     * Each TEK is valid from its rolling start number, a multiple of
       ROLLING_PERIOD, for ROLLING_PERIOD intervals

    All external facing interfaces use datetime.datetime objects instead.
    """

    def __init__(self, start_time=None):
        """Initialize a new exposure tracer

        Args:
            start_time (:obj:`datetime.datetime`, optional): The current time
                The default value is the current time.
        """
        # Previous Diagnosis Keys, most recent first
        self.past_keys = []

        self.observations = []

        if start_time is None:
            start_time = datetime.datetime.now()
        self.rolling_start_number = rolling_start_number_from_time(start_time)

        self._roll_key()

    def _roll_key(self):
        """Pick a fresh TEK for the current window and derive its keys"""
        self.current_tek = generate_new_tek()
        self.current_rpik = derive_rpik(self.current_tek)
        self.current_aemk = derive_aemk(self.current_tek)

    @property
    def current_diagnosis_key(self):
        """The current TEK with its rolling start number"""
        return DiagnosisKey(self.current_tek, self.rolling_start_number)

    def next_window(self):
        """Setup keys for the next validity window, and do housekeeping"""

        # Keep a list of the past RETENTION_PERIOD keys
        self.past_keys.insert(0, self.current_diagnosis_key)
        self.past_keys = self.past_keys[:RETENTION_PERIOD]

        self.rolling_start_number += ROLLING_PERIOD
        self._roll_key()

        # Remove old observations
        last_retained = self.rolling_start_number - RETENTION_PERIOD * ROLLING_PERIOD
        self.observations = [
            observation
            for observation in self.observations
            if observation.interval >= last_retained
        ]

        logger.info("Rolled to key window starting at %d", self.rolling_start_number)

    def _check_current_window(self, interval):
        end_of_window = self.rolling_start_number + ROLLING_PERIOD
        if not self.rolling_start_number <= interval < end_of_window:
            raise ValueError(
                "Interval {} is outside the current key window. "
                "Did you call next_window()?".format(interval)
            )

    def get_broadcast_for_time(self, time, metadata=None):
        """Return the RPI and AEM to broadcast at the requested time

        Args:
            time (:obj:`datetime.datetime`): The requested time
            metadata (byte array, optional): Plaintext metadata. Defaults to
                version 1.0 metadata with DEFAULT_TX_POWER

        Returns:
            (rpi, aem)

        Raises:
            ValueError: If time lies outside the current key window
        """
        interval = interval_number_from_time(time)
        self._check_current_window(interval)

        if metadata is None:
            metadata = encode_metadata(DEFAULT_TX_POWER)

        rpi = rpi_for_interval(self.current_rpik, interval)
        return rpi, xor_metadata(self.current_aemk, rpi, metadata)

    def add_observation(self, rpi, aem, time):
        """Add a received broadcast to the list of observations

        Args:
            rpi (byte array): the observed RPI
            aem (byte array): the observed encrypted metadata
            time (:obj:`datetime.datetime`): time of observation

        Raises:
            ValueError: If time does not correspond to the current key window
            TypeError: If aem is not a byte array
        """
        check_length("RPI", rpi, LENGTH_RPI)
        if not isinstance(aem, (bytes, bytearray, memoryview)):
            raise TypeError("AEM must be a byte array, got {}".format(type(aem)))

        interval = interval_number_from_time(time)
        self._check_current_window(interval)

        self.observations.append(Observation(bytes(rpi), bytes(aem), interval))

    def get_diagnosis_keys(self, first_contagious_time, reset_key_after_release=True):
        """Return the Diagnosis Keys from first_contagious_time up to now

        Args:
            first_contagious_time (:obj:`datetime.datetime`): The time from which we
                 should start tracing
            reset_key_after_release (bool, optional): Whether to pick a new
                 key for the current window. Default is True to preserve
                 privacy of the remaining broadcasts of the window.

        Returns:
            list of :obj:`DiagnosisKey`: Oldest key first

        Raises:
            ValueError: If the requested keys are unavailable
        """
        start = rolling_start_number_from_time(first_contagious_time)

        nr_windows_back = (self.rolling_start_number - start) // ROLLING_PERIOD
        if nr_windows_back > len(self.past_keys) or nr_windows_back < 0:
            raise ValueError("The requested diagnosis keys are not available")

        diagnosis_keys = list(reversed(self.past_keys[:nr_windows_back]))
        diagnosis_keys.append(self.current_diagnosis_key)

        if reset_key_after_release:
            self._roll_key()

        return diagnosis_keys

    def matches_with_batch(self, batch):
        """Find the observations that belong to keys in the batch

        Observations on or after the release time of the batch are ignored, as
        are observations received too long before or after the interval of
        the matching RPI. Both would come from a replayed broadcast.

        Args:
            batch (:obj:`ExposureDataBatch`): A batch of Diagnosis Keys

        Returns:
            list of :obj:`Exposure`: The attributed observations
        """
        release_interval = interval_number_from_time(batch.release_time)
        observations = [
            observation
            for observation in self.observations
            if observation.interval < release_interval
        ]
        if not observations:
            return []

        capacity = int(len(observations) * 1.2) + 1
        observed_rpis = CuckooFilter(capacity, error_rate=CUCKOO_FPR)
        observations_by_rpi = {}
        for observation in observations:
            observed_rpis.insert(observation.rpi)
            observations_by_rpi.setdefault(observation.rpi, []).append(observation)

        exposures = []
        for diagnosis_key in batch.diagnosis_keys:
            rpik = derive_rpik(diagnosis_key.key)
            window = rpis_for_window(rpik, diagnosis_key.rolling_start_number)
            candidates = [
                (offset, rpi) for offset, rpi in enumerate(window) if rpi in observed_rpis
            ]
            if not candidates:
                continue

            aemk = derive_aemk(diagnosis_key.key)
            for offset, rpi in candidates:
                # Empty for false positives of the filter
                for observation in observations_by_rpi.get(rpi, []):
                    interval = interval_at_offset(
                        diagnosis_key.rolling_start_number, offset
                    )
                    if abs(observation.interval - interval) > RPI_TIME_TOLERANCE:
                        logger.debug(
                            "Ignoring RPI %s observed at %d, valid at %d",
                            observation.rpi.hex(),
                            observation.interval,
                            interval,
                        )
                        continue

                    metadata = xor_metadata(aemk, rpi, observation.aem)
                    exposures.append(
                        Exposure(diagnosis_key, observation, offset, metadata)
                    )

        return exposures
