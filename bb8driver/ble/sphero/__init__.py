# SPDX-License-Identifier: MIT
# Copyright (c) 2015-2024 The bb8driver Authors

"""This module and its submodules are used for Bluetooth Low Energy
communications with Sphero BB-8 robots.

BB-8 exposes two GATT services. The BLE service holds characteristics that
manage the radio itself (wake, transmit power, anti-DoS handshake, RSSI). The
robot service holds the characteristic that Sphero API command packets are
written to and the characteristic that replies are notified on.

UUIDs are written without dashes, the same way the robot firmware documents
them.
"""

from typing import NamedTuple

BLE_SERVICE = "22bb746f2bb075542d6f726568705327"
"""BB-8 BLE management service UUID."""

BLE_WAKE = "22bb746f2bbf75542d6f726568705327"
"""Wake characteristic UUID.

Writing ``0x01`` wakes the robot from its radio-only sleep state.
"""

BLE_TX_POWER = "22bb746f2bb275542d6f726568705327"
"""Radio transmit power characteristic UUID.

Higher levels give more range and use more battery.
"""

BLE_ANTI_DOS = "22bb746f2bbd75542d6f726568705327"
"""Anti-DoS characteristic UUID.

The robot ignores developer commands until :data:`ANTI_DOS_KEY` has been
written here.
"""

BLE_RSSI = "22bb746f2bb675542d6f726568705327"
"""Received signal strength characteristic UUID."""

ROBOT_SERVICE = "22bb746f2ba075542d6f726568705327"
"""BB-8 robot control service UUID."""

ROBOT_COMMAND = "22bb746f2ba175542d6f726568705327"
"""Robot command characteristic UUID.

Sphero API client command packets are written to this characteristic.
"""

ROBOT_NOTIFY = "22bb746f2ba675542d6f726568705327"
"""Robot notify characteristic UUID.

Synchronous replies and asynchronous messages are received via notifications.
"""

ANTI_DOS_KEY = "011i3"
"""The string that unlocks developer mode."""

DEV_MODE_TX_POWER = 7
"""Transmit power level used when entering developer mode."""


class CharacteristicAddress(NamedTuple):
    """A GATT characteristic and the service that contains it."""

    service: str
    characteristic: str


WAKE = CharacteristicAddress(BLE_SERVICE, BLE_WAKE)
TX_POWER = CharacteristicAddress(BLE_SERVICE, BLE_TX_POWER)
ANTI_DOS = CharacteristicAddress(BLE_SERVICE, BLE_ANTI_DOS)
RSSI = CharacteristicAddress(BLE_SERVICE, BLE_RSSI)
COMMAND = CharacteristicAddress(ROBOT_SERVICE, ROBOT_COMMAND)
NOTIFY = CharacteristicAddress(ROBOT_SERVICE, ROBOT_NOTIFY)
