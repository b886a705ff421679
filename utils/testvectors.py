#!/usr/bin/env python3

""" Produces test vectors for the Exposure Notification key schedule """

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

from exposure_notification.protocols.keyschedule import (
    derive_aemk,
    derive_rpik,
    encode_metadata,
    padded_data_for_interval,
    rpis_for_window,
    xor_metadata,
)

TEK0 = bytes.fromhex("00000000000000000000000000000000")
TEK1 = bytes.fromhex("75c734c6dd1a782de7a965da5eb93125")

# 2020-04-02 00:00 UTC
ROLLING_START_NUMBER = 2642976


def main():
    print("## Test vectors of keys, RPIs and AEMs ##\n")
    metadata = encode_metadata(8)
    for tek in [TEK0, TEK1]:
        rpik = derive_rpik(tek)
        aemk = derive_aemk(tek)
        print("  * TEK  = {}".format(tek.hex()))
        print("    RPIK = {}".format(rpik.hex()))
        print("    AEMK = {}".format(aemk.hex()))

        rpis = rpis_for_window(rpik, ROLLING_START_NUMBER)
        for offset in [0, 1, 2, 143]:
            interval = ROLLING_START_NUMBER + offset
            rpi = rpis[offset]
            print("    - interval {}".format(interval))
            print("      padded data = {}".format(padded_data_for_interval(interval).hex()))
            print("      rpi         = {}".format(rpi.hex()))
            print(
                "      aem({})  = {}".format(
                    metadata.hex(), xor_metadata(aemk, rpi, metadata).hex()
                )
            )


if __name__ == "__main__":
    main()
