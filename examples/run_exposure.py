#!/usr/bin/env python3

""" Simple example/demo of Exposure Notification matching

This demo simulates some interactions between two phones, represented by
exposure tracers, and then matches Bob's published Diagnosis Keys against
the broadcasts Alice observed.
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


from datetime import datetime, timedelta, timezone

from exposure_notification.config import ROLLING_PERIOD, SECONDS_PER_INTERVAL
from exposure_notification.protocols.keyschedule import decode_metadata, generate_new_tek
from exposure_notification.protocols.matching import (
    DiagnosisKey,
    ExposureDataBatch,
    ExposureTracer,
    SECONDS_PER_BATCH,
    match_batch,
)


def start_of_window(app):
    """
    Convenience function to convert the current window to a datetime
    """
    seconds = app.rolling_start_number * SECONDS_PER_INTERVAL
    return datetime.fromtimestamp(seconds, timezone.utc)


def report_window(app):
    """
    Convenience function to report start of the key window
    """
    print("---- {} ({}) ----".format(start_of_window(app), app.rolling_start_number))


def process_single_window(alice, bob, interaction_time=None):
    """
    Convenience function, process and report on a single key window
    """
    report_window(alice)

    if interaction_time:
        print("Alice and Bob interact:")
        rpi_bob, aem_bob = bob.get_broadcast_for_time(interaction_time)
        alice.add_observation(rpi_bob, aem_bob, interaction_time)
        print("  Alice observes Bob's RPI {}, AEM {}".format(rpi_bob.hex(), aem_bob.hex()))

        rpi_alice, aem_alice = alice.get_broadcast_for_time(interaction_time)
        bob.add_observation(rpi_alice, aem_alice, interaction_time)
        print("  Bob observes Alice's RPI {}".format(rpi_alice.hex()))
    else:
        print("Alice and Bob do not interact")

    alice.next_window()
    bob.next_window()
    print("")


def main():
    alice = ExposureTracer()
    bob = ExposureTracer()

    ### Interaction ###

    process_single_window(alice, bob)
    process_single_window(alice, bob)

    interaction_time = start_of_window(alice) + timedelta(hours=10)
    process_single_window(alice, bob, interaction_time)

    print("... skipping 3 days ...\n")
    for _ in range(3):
        alice.next_window()
        bob.next_window()

    ### Diagnosis and reporting ###

    report_window(alice)
    print("Bob is diagnosed with SARS-CoV-2")
    bob_contagious_start = start_of_window(bob) - timedelta(days=5)
    print("Bob started being contagious at {}".format(bob_contagious_start))

    print("\n[Bob -> Server] Bob sends his Diagnosis Keys:")
    diagnosis_keys = bob.get_diagnosis_keys(bob_contagious_start)
    for diagnosis_key in diagnosis_keys:
        print(
            " * TEK {} valid from interval {}".format(
                diagnosis_key.key.hex(), diagnosis_key.rolling_start_number
            )
        )

    ### Exposure matching ###

    print("\n[Server] Compiles download batch\n")
    release_time = (
        bob.rolling_start_number * SECONDS_PER_INTERVAL + 4 * SECONDS_PER_BATCH
    )
    batch = ExposureDataBatch(diagnosis_keys, release_time=release_time)

    print("[Server -> Alice] Alice receives batch")
    print("  * Alice checks if she was in contact with an infected person")

    exposures = alice.matches_with_batch(batch)
    for exposure in exposures:
        metadata = decode_metadata(exposure.metadata)
        print(
            "  * MATCH: RPI {} at offset {}, version {}.{}, tx power {} dBm".format(
                exposure.observation.rpi.hex(),
                exposure.offset,
                metadata.major,
                metadata.minor,
                metadata.tx_power,
            )
        )

    if exposures:
        print("  * CORRECT: Alice's phone concludes she is at risk")
    else:
        print("  * ERROR: Alice's phone does not conclude she is at risk")
        raise RuntimeError("Example code failed!")

    ### Matching a single broadcast ###

    print("\n[Alice] Matches a single broadcast against three Diagnosis Keys")
    observation = alice.observations[0]
    diagnosis_key = exposures[0].diagnosis_key
    candidates = [
        diagnosis_key,
        DiagnosisKey(
            diagnosis_key.key, diagnosis_key.rolling_start_number - 3 * ROLLING_PERIOD
        ),
        DiagnosisKey(generate_new_tek(), diagnosis_key.rolling_start_number),
    ]

    results = match_batch(candidates, [observation])
    for candidate in candidates:
        matched = any(result[0] is candidate for result in results)
        print(
            "  * {} {} (start {})".format(
                "MATCH" if matched else "No match",
                candidate.key.hex(),
                candidate.rolling_start_number,
            )
        )

    if len(results) != 1:
        raise RuntimeError("Example code failed!")


if __name__ == "__main__":
    main()
