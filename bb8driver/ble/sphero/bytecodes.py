# SPDX-License-Identifier: MIT
# Copyright (c) 2015-2024 The bb8driver Authors

"""
The Sphero :mod:`.bytecodes` module contains enums for interpreting binary
values used in the `Sphero API v1`_ as spoken by BB-8.

.. _Sphero API v1: https://sdk.sphero.com/docs/api_spec/general_api
"""

from enum import IntEnum, IntFlag, unique
from typing import Type


def _create_pseudo_member_(cls: Type[IntEnum], value: int) -> IntEnum:
    """
    Creates a new enum member at runtime for ``IntEnum``s.
    """
    pseudo_member = cls._value2member_map_.get(value, None)
    if pseudo_member is None:
        pseudo_member = int.__new__(cls, value)
        pseudo_member._name_ = str(value)
        pseudo_member._value_ = value
        pseudo_member = cls._value2member_map_.setdefault(value, pseudo_member)
    return pseudo_member


SOP1 = 0xFF
"""First start-of-packet byte. Always ``0xFF``."""

SOP2_BASE = 0xFC
"""Second start-of-packet byte of a client command before flags are applied."""

SOP2_RESPONSE = 0xFF
"""Second start-of-packet byte of a synchronous reply."""

SOP2_ASYNC = 0xFE
"""Second start-of-packet byte of an asynchronous message."""


class PacketFlag(IntFlag):
    """Flags that are or-ed into :data:`SOP2_BASE` for client commands."""

    REQUEST_ACKNOWLEDGEMENT = 1 << 0
    """The robot sends a synchronous reply when the command completes."""

    RESET_TIMEOUT = 1 << 1
    """The command resets the robot's inactivity timeout."""


@unique
class DeviceId(IntEnum):
    """Virtual device that a command is addressed to."""

    CORE = 0x00
    """Core commands, common to all Sphero robots."""

    BOOTLOADER = 0x01
    """Bootloader commands."""

    SPHERO = 0x02
    """Robot specific commands."""


@unique
class CoreCommand(IntEnum):
    """Command ids for :attr:`DeviceId.CORE`."""

    PING = 0x01
    GET_VERSIONING = 0x02
    SET_DEVICE_NAME = 0x10
    GET_BLUETOOTH_INFO = 0x11
    GET_POWER_STATE = 0x20
    """Requests the battery and charging state. See :class:`PowerState`."""
    SET_POWER_NOTIFICATION = 0x21
    SLEEP = 0x22


@unique
class SpheroCommand(IntEnum):
    """Command ids for :attr:`DeviceId.SPHERO`."""

    SET_HEADING = 0x01
    SET_STABILIZATION = 0x02
    """Turns the internal stabilization control loop on or off."""
    SET_ROTATION_RATE = 0x03
    GET_CHASSIS_ID = 0x07
    SET_DATA_STREAMING = 0x11
    """Configures asynchronous sensor data streaming."""
    SET_RGB_LED = 0x20
    SET_BACK_LED = 0x21
    GET_RGB_LED = 0x22
    ROLL = 0x30
    SET_RAW_MOTORS = 0x33
    """Drives the left and right motors directly."""
    SET_DEVICE_MODE = 0x42
    GET_DEVICE_MODE = 0x44


@unique
class MotorMode(IntEnum):
    """
    Motor modes used by the raw motor command.

    Setting either motor to a mode other than :attr:`IGNORE` disables
    stabilization on the robot. Turn it back on with the stabilization command
    when done.
    """

    OFF = 0x00
    """Motor is open circuit."""

    FORWARD = 0x01
    """Motor drives forward."""

    REVERSE = 0x02
    """Motor drives in reverse."""

    BRAKE = 0x03
    """Motor is shorted."""

    IGNORE = 0x04
    """Motor mode and power are left unchanged."""


@unique
class RollState(IntEnum):
    """The state parameter of the roll command."""

    STOP = 0x00
    """Brakes to a stop."""

    GO = 0x01
    """Normal driving."""

    CALIBRATE = 0x02
    """Rotates in place without moving forward."""


@unique
class DeviceMode(IntEnum):
    """The mode reported by the get device mode command."""

    NORMAL = 0x00
    USER_HACK = 0x01


@unique
class BatteryState(IntEnum):
    """The power state reported by the get power state command."""

    CHARGING = 0x01
    OK = 0x02
    LOW = 0x03
    CRITICAL = 0x04


@unique
class ResponseCode(IntEnum):
    """Message response codes (MRSP) of synchronous replies."""

    OK = 0x00
    """Command succeeded."""

    GENERAL_ERROR = 0x01
    """General, non-specific error."""

    BAD_CHECKSUM = 0x02
    """Received checksum failure."""

    FRAGMENT = 0x03
    """Received command fragment."""

    BAD_COMMAND = 0x04
    """Unknown command id."""

    UNSUPPORTED = 0x05
    """Command currently unsupported."""

    BAD_MESSAGE = 0x06
    """Bad message format."""

    BAD_PARAMETER = 0x07
    """Parameter value(s) invalid."""

    EXECUTION_FAILED = 0x08
    """Failed to execute command."""

    BAD_DEVICE_ID = 0x09
    """Unknown device id."""

    MEMORY_BUSY = 0x0A
    """Generic RAM access needed but it is busy."""

    BAD_PASSWORD = 0x0B
    """Supplied password incorrect."""

    POWER_LOW = 0x31
    """Voltage too low for reflash operation."""

    PAGE_ILLEGAL = 0x32
    """Illegal page number provided."""

    FLASH_FAILED = 0x33
    """Page did not reprogram correctly."""

    MAIN_APP_CORRUPT = 0x34
    """Main application corrupt."""

    TIMEOUT = 0x35
    """Message timed out."""

    @classmethod
    def _missing_(cls, value):
        # firmware may report codes newer than this table
        if value < 0 or value > 255:
            return None
        return _create_pseudo_member_(cls, value)


@unique
class AsyncMessageKind(IntEnum):
    """Id codes of asynchronous messages sent by the robot."""

    POWER_NOTIFICATION = 0x01
    LEVEL_1_DIAGNOSTIC = 0x02
    SENSOR_DATA_STREAMING = 0x03
    """Frames configured with the data streaming command."""
    CONFIG_BLOCK = 0x04
    PRE_SLEEP_WARNING = 0x05
    MACRO_MARKERS = 0x06
    COLLISION_DETECTED = 0x07
    ORBBASIC_PRINT = 0x08
    ORBBASIC_ERROR_ASCII = 0x09
    ORBBASIC_ERROR_BINARY = 0x0A
    SELF_LEVEL_RESULT = 0x0B
    GYRO_AXIS_LIMIT_EXCEEDED = 0x0C
    SPHERO_SOUL_DATA = 0x0D
    LEVEL_UP = 0x0E
    SHIELD_DAMAGE = 0x0F
    XP_UPDATE = 0x10
    BOOST_UPDATE = 0x11

    @classmethod
    def _missing_(cls, value):
        if value < 0 or value > 255:
            return None
        return _create_pseudo_member_(cls, value)
