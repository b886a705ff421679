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

from datetime import datetime, timedelta, timezone
import pytest

import exposure_notification.config as config
from exposure_notification.protocols import matching
from exposure_notification.protocols.keyschedule import (
    encode_metadata,
    interval_number_from_time,
)
from exposure_notification.protocols.matching import (
    ExposureDataBatch,
    ExposureTracer,
    SECONDS_PER_BATCH,
)

START_TIME = datetime(2020, 4, 25, 15, 17, tzinfo=timezone.utc)
RPI = bytes.fromhex("8be6cd371c5c891604bfbe49df845096")
AEM = bytes.fromhex("edaa7d92")


def release_time_after_days(days):
    return (int(START_TIME.timestamp()) // config.SECONDS_PER_DAY + days) * (
        config.SECONDS_PER_DAY
    )


def interact(alice, bob, time):
    """Alice and Bob observe each other's broadcast at time"""
    rpi_bob, aem_bob = bob.get_broadcast_for_time(time)
    rpi_alice, aem_alice = alice.get_broadcast_for_time(time)
    alice.add_observation(rpi_bob, aem_bob, time)
    bob.add_observation(rpi_alice, aem_alice, time)


####################################
### TEST INTERNAL DATASTRUCTURES ###
####################################


def test_window_alignment():
    alice = ExposureTracer(start_time=START_TIME)
    assert alice.rolling_start_number % config.ROLLING_PERIOD == 0

    alice.next_window()
    assert alice.rolling_start_number % config.ROLLING_PERIOD == 0
    assert alice.past_keys[0].rolling_start_number == (
        alice.rolling_start_number - config.ROLLING_PERIOD
    )


def test_next_window_rolls_key():
    alice = ExposureTracer(start_time=START_TIME)
    old_key = alice.current_tek
    alice.next_window()
    assert alice.current_tek != old_key
    assert alice.past_keys[0].key == old_key


def test_deleting_old_keys():
    alice = ExposureTracer(start_time=START_TIME)
    for _ in range(config.RETENTION_PERIOD + 5):
        alice.next_window()

    assert len(alice.past_keys) == config.RETENTION_PERIOD


def test_exposure_tracing_retention():
    alice = ExposureTracer(start_time=START_TIME)
    alice.add_observation(RPI, AEM, START_TIME + timedelta(minutes=20))
    alice.add_observation(RPI, AEM, START_TIME + timedelta(hours=6))

    for _ in range(config.RETENTION_PERIOD):
        alice.next_window()
    assert len(alice.observations) == 2

    alice.next_window()
    assert len(alice.observations) == 0


def test_broadcast_changes_every_interval():
    alice = ExposureTracer(start_time=START_TIME)
    rpi0, _ = alice.get_broadcast_for_time(START_TIME)
    rpi1, _ = alice.get_broadcast_for_time(START_TIME + timedelta(minutes=10))
    rpi2, _ = alice.get_broadcast_for_time(START_TIME + timedelta(seconds=30))
    assert rpi0 != rpi1
    assert len(rpi0) == config.LENGTH_RPI

    # Same interval, same RPI
    assert rpi0 == rpi2


def test_broadcast_outside_window():
    alice = ExposureTracer(start_time=START_TIME)
    with pytest.raises(ValueError):
        alice.get_broadcast_for_time(START_TIME - timedelta(days=1))

    with pytest.raises(ValueError):
        alice.get_broadcast_for_time(START_TIME + timedelta(days=1))


def test_observation_outside_window():
    alice = ExposureTracer(start_time=START_TIME)
    with pytest.raises(ValueError):
        alice.add_observation(RPI, AEM, START_TIME + timedelta(days=1))


def test_observation_invalid_rpi():
    alice = ExposureTracer(start_time=START_TIME)
    with pytest.raises(ValueError):
        alice.add_observation(RPI[:8], AEM, START_TIME)


def test_observation_integer_aem():
    alice = ExposureTracer(start_time=START_TIME)
    with pytest.raises(TypeError):
        alice.add_observation(RPI, 4, START_TIME)


def test_unavailable_diagnosis_keys():
    alice = ExposureTracer(start_time=START_TIME)

    # Requesting a past key that is not there
    with pytest.raises(ValueError):
        alice.get_diagnosis_keys(START_TIME - timedelta(days=1))

    # Requesting a future key that is not there
    with pytest.raises(ValueError):
        alice.get_diagnosis_keys(START_TIME + timedelta(days=1, hours=1))


def test_diagnosis_keys_reset_current_key():
    alice = ExposureTracer(start_time=START_TIME)
    alice.next_window()
    alice.next_window()
    old_key = alice.current_tek

    diagnosis_keys = alice.get_diagnosis_keys(START_TIME)
    assert [dk.rolling_start_number for dk in diagnosis_keys] == [
        alice.rolling_start_number - 2 * config.ROLLING_PERIOD,
        alice.rolling_start_number - config.ROLLING_PERIOD,
        alice.rolling_start_number,
    ]
    assert diagnosis_keys[-1].key == old_key
    assert alice.current_tek != old_key


def test_diagnosis_keys_keep_current_key():
    alice = ExposureTracer(start_time=START_TIME)
    old_key = alice.current_tek
    alice.get_diagnosis_keys(START_TIME, reset_key_after_release=False)
    assert alice.current_tek == old_key


#############################
### TEST EXPOSURE TRACING ###
#############################


def test_exposure_tracing_single_observation():
    alice = ExposureTracer(start_time=START_TIME)
    bob = ExposureTracer(start_time=START_TIME)

    interaction_time = START_TIME + timedelta(minutes=20)
    interact(alice, bob, interaction_time)

    # Advance 4 days
    for _ in range(4):
        alice.next_window()
        bob.next_window()

    # Bob diagnosed, get diagnosis keys
    diagnosis_keys = bob.get_diagnosis_keys(START_TIME)
    batch = ExposureDataBatch(diagnosis_keys, release_time=release_time_after_days(4))

    exposures = alice.matches_with_batch(batch)
    assert len(exposures) == 1

    exposure = exposures[0]
    interval = interval_number_from_time(interaction_time)
    assert exposure.diagnosis_key == diagnosis_keys[0]
    assert exposure.offset == interval - diagnosis_keys[0].rolling_start_number
    assert exposure.metadata == encode_metadata(config.DEFAULT_TX_POWER)


def test_exposure_tracing_multiple_observations():
    alice = ExposureTracer(start_time=START_TIME)
    bob = ExposureTracer(start_time=START_TIME)

    interaction_times = [
        START_TIME + timedelta(minutes=mins) for mins in [20, 100, 240]
    ]
    for interaction_time in interaction_times:
        interact(alice, bob, interaction_time)

    for _ in range(4):
        alice.next_window()
        bob.next_window()

    diagnosis_keys = bob.get_diagnosis_keys(START_TIME)
    batch = ExposureDataBatch(diagnosis_keys, release_time=release_time_after_days(4))

    # Alice should have three interactions with Bob
    assert len(alice.matches_with_batch(batch)) == 3


def test_exposure_tracing_derives_aemk_once_per_hit_key(monkeypatch):
    alice = ExposureTracer(start_time=START_TIME)
    bob = ExposureTracer(start_time=START_TIME)

    for mins in [20, 100, 240]:
        interact(alice, bob, START_TIME + timedelta(minutes=mins))

    for _ in range(4):
        alice.next_window()
        bob.next_window()

    diagnosis_keys = bob.get_diagnosis_keys(START_TIME)
    batch = ExposureDataBatch(diagnosis_keys, release_time=release_time_after_days(4))

    derived_for = []
    derive_aemk = matching.derive_aemk

    def counting_derive_aemk(tek):
        derived_for.append(tek)
        return derive_aemk(tek)

    monkeypatch.setattr(matching, "derive_aemk", counting_derive_aemk)
    exposures = alice.matches_with_batch(batch)

    # Only the first key was used while Alice and Bob met
    assert len(exposures) == 3
    assert derived_for == [diagnosis_keys[0].key]


def test_exposure_tracing_custom_metadata():
    alice = ExposureTracer(start_time=START_TIME)
    bob = ExposureTracer(start_time=START_TIME)

    interaction_time = START_TIME + timedelta(minutes=20)
    metadata = encode_metadata(-12)
    rpi, aem = bob.get_broadcast_for_time(interaction_time, metadata=metadata)
    alice.add_observation(rpi, aem, interaction_time)

    alice.next_window()
    bob.next_window()

    batch = ExposureDataBatch(
        bob.get_diagnosis_keys(START_TIME), release_time=release_time_after_days(1)
    )
    exposures = alice.matches_with_batch(batch)
    assert [exposure.metadata for exposure in exposures] == [metadata]


def test_exposure_tracing_contact_before_contagious():
    alice = ExposureTracer(start_time=START_TIME)
    bob = ExposureTracer(start_time=START_TIME)

    interact(alice, bob, START_TIME + timedelta(minutes=20))

    for _ in range(4):
        alice.next_window()
        bob.next_window()

    # Bob diagnosed, contagious from the day after Alice and Bob met
    start_of_being_contagious = START_TIME + timedelta(days=1)
    diagnosis_keys = bob.get_diagnosis_keys(start_of_being_contagious)
    batch = ExposureDataBatch(diagnosis_keys, release_time=release_time_after_days(4))

    assert alice.matches_with_batch(batch) == []


def test_exposure_tracing_no_replay_after_release():
    alice = ExposureTracer(start_time=START_TIME)
    bob = ExposureTracer(start_time=START_TIME)

    # Bob transmits an RPI
    transmit_time = START_TIME + timedelta(minutes=20)
    rpi_bob, aem_bob = bob.get_broadcast_for_time(transmit_time)

    diagnosis_keys = bob.get_diagnosis_keys(START_TIME)

    release_time = (
        int(transmit_time.timestamp()) // SECONDS_PER_BATCH + 1
    ) * SECONDS_PER_BATCH
    batch = ExposureDataBatch(diagnosis_keys, release_time=release_time)

    # Bob's RPI is replayed to Alice after the release time
    receive_time = datetime.fromtimestamp(release_time, timezone.utc) + timedelta(
        minutes=7
    )
    alice.add_observation(rpi_bob, aem_bob, receive_time)

    assert alice.matches_with_batch(batch) == []


def test_exposure_tracing_no_replay_outside_tolerance():
    alice = ExposureTracer(start_time=START_TIME)
    bob = ExposureTracer(start_time=START_TIME)

    transmit_time = START_TIME - timedelta(hours=10)
    rpi_bob, aem_bob = bob.get_broadcast_for_time(transmit_time)

    # Replayed 5 hours later, and also received live 1 hour later
    alice.add_observation(rpi_bob, aem_bob, transmit_time + timedelta(hours=5))
    alice.add_observation(rpi_bob, aem_bob, transmit_time + timedelta(hours=1))

    alice.next_window()
    bob.next_window()

    batch = ExposureDataBatch(
        bob.get_diagnosis_keys(START_TIME), release_time=release_time_after_days(1)
    )
    exposures = alice.matches_with_batch(batch)
    assert len(exposures) == 1

    transmit_interval = interval_number_from_time(transmit_time)
    assert exposures[0].observation.interval == transmit_interval + 6


def test_exposure_tracing_no_contact_with_bystander():
    alice = ExposureTracer(start_time=START_TIME)
    bob = ExposureTracer(start_time=START_TIME)
    carol = ExposureTracer(start_time=START_TIME)

    interact(alice, bob, START_TIME + timedelta(minutes=20))

    alice.next_window()
    carol.next_window()

    batch = ExposureDataBatch(
        carol.get_diagnosis_keys(START_TIME), release_time=release_time_after_days(1)
    )
    assert alice.matches_with_batch(batch) == []


def test_exposure_tracing_no_observations():
    alice = ExposureTracer(start_time=START_TIME)
    bob = ExposureTracer(start_time=START_TIME)

    batch = ExposureDataBatch(
        bob.get_diagnosis_keys(START_TIME), release_time=release_time_after_days(1)
    )
    assert alice.matches_with_batch(batch) == []
