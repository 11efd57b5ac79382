# SPDX-License-Identifier: MIT
# Copyright (c) 2024 The bb8driver Authors

"""
Transports that carry driver writes to a robot.

A transport is any object with these coroutines:

``write_service_characteristic(service, characteristic, data)``
    Writes ``data`` to a characteristic and returns whatever the backend
    reports for the write.

``read_service_characteristic(service, characteristic)``
    Reads the current value of a characteristic.

``get_characteristic(service, characteristic)``
    Subscribes to notifications and returns an observable of the values.

Failures are raised as exceptions from the backend (e.g. ``BleakError``).
"""

import enum


class ConnectionState(enum.Enum):
    """
    Indicates state of a transport.
    """

    CONNECTING = enum.auto()
    """
    The radio link is being established.
    """
    CONNECTED = enum.auto()
    """
    Characteristics can be read and written.
    """
    DISCONNECTING = enum.auto()
    """
    The radio link is being closed.
    """
    DISCONNECTED = enum.auto()
    """
    No radio link. This is also the initial state.
    """
