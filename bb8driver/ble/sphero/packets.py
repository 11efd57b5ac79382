# SPDX-License-Identifier: MIT
# Copyright (c) 2015-2024 The bb8driver Authors

"""
The Sphero :mod:`.packets` module contains functions for encoding client
command packets and decoding replies used in the `Sphero API v1`_.

Each encoder is a pure function that takes the semantic parameters of one
command plus a :class:`PacketOptions` record and returns the bytes that are
written to :data:`bb8driver.ble.sphero.ROBOT_COMMAND`.

Client command packets have the layout::

    SOP1 SOP2 DID CID SEQ DLEN <data> CHK

Replies are received as notifications on
:data:`bb8driver.ble.sphero.ROBOT_NOTIFY` and are either synchronous
(``SOP2 == 0xFF``)::

    SOP1 SOP2 MRSP SEQ DLEN <data> CHK

or asynchronous (``SOP2 == 0xFE``)::

    SOP1 SOP2 ID_CODE DLEN_MSB DLEN_LSB <data> CHK

.. _Sphero API v1: https://sdk.sphero.com/docs/api_spec/general_api
"""

import logging
import struct
from typing import List, NamedTuple, Optional, Union

from bb8driver.ble.sphero.bytecodes import (
    SOP1,
    SOP2_ASYNC,
    SOP2_BASE,
    SOP2_RESPONSE,
    AsyncMessageKind,
    BatteryState,
    CoreCommand,
    DeviceId,
    DeviceMode,
    MotorMode,
    PacketFlag,
    ResponseCode,
    SpheroCommand,
)
from bb8driver.tools.checksum import sum_complement

logger = logging.getLogger(__name__)

MAX_HEADING = 359
"""Largest heading in degrees accepted by the roll command."""

MAX_ASYNC_DATA_SIZE = 1024
"""
Largest asynchronous message length (DLEN) accepted by :class:`ResponseParser`.
Longer lengths are treated as a corrupt header.
"""

_MAX_DATA_SIZE = 0xFF - 1
_HEADER_SIZE = 5


class PacketOptions(NamedTuple):
    """Options applied to every client command packet."""

    reset_timeout: bool = True
    """If true, the command resets the robot's inactivity timeout."""

    request_acknowledgement: bool = False
    """If true, the robot sends a synchronous reply for the command."""

    sequence: int = 0
    """Sequence number echoed back in the synchronous reply."""


def _check_range(name: str, value: int, maximum: int) -> None:
    if not isinstance(value, int):
        raise TypeError(f"{name} must be int")

    if not 0 <= value <= maximum:
        raise ValueError(f"{name} must be between 0 and {maximum}, got {value}")


def _pack_command(
    did: DeviceId, cid: int, data: bytes, options: PacketOptions
) -> bytes:
    """
    Frames a command with start-of-packet bytes, length and checksum.

    Args:
        did: The virtual device id.
        cid: The command id.
        data: The command payload.
        options: Packet options.

    Returns:
        The complete packet.

    Raises:
        TypeError: ``options`` is not a :class:`PacketOptions`.
        ValueError: the sequence number or payload size is out of range.
    """
    if not isinstance(options, PacketOptions):
        raise TypeError("options must be PacketOptions")

    _check_range("sequence", options.sequence, 0xFF)

    if len(data) > _MAX_DATA_SIZE:
        raise ValueError(f"data is too big, limited to {_MAX_DATA_SIZE} bytes")

    sop2 = SOP2_BASE

    if options.reset_timeout:
        sop2 |= PacketFlag.RESET_TIMEOUT

    if options.request_acknowledgement:
        sop2 |= PacketFlag.REQUEST_ACKNOWLEDGEMENT

    body = bytes([did, cid, options.sequence, len(data) + 1]) + data

    return bytes([SOP1, sop2]) + body + bytes([sum_complement(body)])


###############################################################################
# Command encoders
###############################################################################


def set_rgb(
    color: int, persist: bool, options: PacketOptions = PacketOptions()
) -> bytes:
    """
    Sets the color of the main LED.

    Args:
        color: The color packed as ``0xRRGGBB``.
        persist: If true, the color is kept as the user LED color across
            power cycles.
        options: Packet options.
    """
    _check_range("color", color, 0xFFFFFF)
    data = struct.pack(
        ">BBBB",
        (color >> 16) & 0xFF,
        (color >> 8) & 0xFF,
        color & 0xFF,
        bool(persist),
    )
    return _pack_command(DeviceId.SPHERO, SpheroCommand.SET_RGB_LED, data, options)


def roll(
    speed: int, heading: int, state: int, options: PacketOptions = PacketOptions()
) -> bytes:
    """
    Rolls at ``speed`` in the direction of ``heading``.

    Args:
        speed: The speed, 0 to 255.
        heading: The heading in degrees, 0 to 359.
        state: A :class:`.bytecodes.RollState` value.
        options: Packet options.
    """
    _check_range("speed", speed, 0xFF)
    _check_range("heading", heading, MAX_HEADING)
    _check_range("state", state, 0xFF)
    data = struct.pack(">BHB", speed, heading, state)
    return _pack_command(DeviceId.SPHERO, SpheroCommand.ROLL, data, options)


def set_raw_motor_values(
    left_mode: int,
    left_power: int,
    right_mode: int,
    right_power: int,
    options: PacketOptions = PacketOptions(),
) -> bytes:
    """
    Drives both motors directly, bypassing the stabilization system.

    Args:
        left_mode: A :class:`.bytecodes.MotorMode` for the left motor.
        left_power: The left motor power, 0 to 255.
        right_mode: A :class:`.bytecodes.MotorMode` for the right motor.
        right_power: The right motor power, 0 to 255.
        options: Packet options.

    Raises:
        ValueError: a mode is not a valid :class:`.bytecodes.MotorMode`.
    """
    left_mode = MotorMode(left_mode)
    right_mode = MotorMode(right_mode)
    _check_range("left_power", left_power, 0xFF)
    _check_range("right_power", right_power, 0xFF)
    data = struct.pack(">BBBB", left_mode, left_power, right_mode, right_power)
    return _pack_command(DeviceId.SPHERO, SpheroCommand.SET_RAW_MOTORS, data, options)


def set_stabilization(
    enable: Union[bool, int], options: PacketOptions = PacketOptions()
) -> bytes:
    """
    Turns the stabilization control loop on or off.

    Args:
        enable: Truthy to enable stabilization.
        options: Packet options.
    """
    data = bytes([1 if enable else 0])
    return _pack_command(
        DeviceId.SPHERO, SpheroCommand.SET_STABILIZATION, data, options
    )


def set_data_streaming(
    sensor_rate_divisor: int,
    frames: int,
    mask: int,
    packet_count: int,
    mask2: Optional[int] = None,
    options: PacketOptions = PacketOptions(),
) -> bytes:
    """
    Configures asynchronous sensor data streaming.

    Args:
        sensor_rate_divisor: Divisor of the 400 Hz sensor sampling rate.
        frames: Number of sample frames per streamed packet.
        mask: Bitwise selector of the data sources to stream.
        packet_count: Number of packets to send, 0 for unlimited.
        mask2: Optional second selector for newer data sources.
        options: Packet options.
    """
    _check_range("sensor_rate_divisor", sensor_rate_divisor, 0xFFFF)
    _check_range("frames", frames, 0xFFFF)
    _check_range("mask", mask, 0xFFFFFFFF)
    _check_range("packet_count", packet_count, 0xFF)

    data = struct.pack(">HHIB", sensor_rate_divisor, frames, mask, packet_count)

    if mask2 is not None:
        _check_range("mask2", mask2, 0xFFFFFFFF)
        data += struct.pack(">I", mask2)

    return _pack_command(
        DeviceId.SPHERO, SpheroCommand.SET_DATA_STREAMING, data, options
    )


def get_device_mode(options: PacketOptions = PacketOptions()) -> bytes:
    """Requests the current device mode. See :func:`unpack_device_mode`."""
    return _pack_command(DeviceId.SPHERO, SpheroCommand.GET_DEVICE_MODE, b"", options)


def get_rgb(options: PacketOptions = PacketOptions()) -> bytes:
    """Requests the user LED color. See :func:`unpack_rgb`."""
    return _pack_command(DeviceId.SPHERO, SpheroCommand.GET_RGB_LED, b"", options)


def get_chassis_id(options: PacketOptions = PacketOptions()) -> bytes:
    """Requests the chassis id. See :func:`unpack_chassis_id`."""
    return _pack_command(DeviceId.SPHERO, SpheroCommand.GET_CHASSIS_ID, b"", options)


def get_power_state(options: PacketOptions = PacketOptions()) -> bytes:
    """Requests the battery state. See :func:`unpack_power_state`."""
    return _pack_command(DeviceId.CORE, CoreCommand.GET_POWER_STATE, b"", options)


###############################################################################
# Replies
###############################################################################


class Response(NamedTuple):
    """A synchronous reply to a client command."""

    code: ResponseCode
    sequence: int
    data: bytes

    @property
    def ok(self) -> bool:
        """``True`` if the command succeeded."""
        return self.code == ResponseCode.OK


class AsyncMessage(NamedTuple):
    """An asynchronous message sent by the robot on its own."""

    kind: AsyncMessageKind
    data: bytes


Packet = Union[Response, AsyncMessage]


def _packet_size(data: bytes) -> int:
    if data[1] == SOP2_RESPONSE:
        return _HEADER_SIZE + data[4]

    return _HEADER_SIZE + int.from_bytes(data[3:5], "big")


def parse_packet(data: bytes) -> Packet:
    """
    Parses a complete reply packet.

    Args:
        data: Raw binary data of exactly one packet.

    Returns:
        A :class:`Response` or :class:`AsyncMessage`.

    Raises:
        ValueError: the data is not a well-formed packet.
    """
    if len(data) < _HEADER_SIZE + 1:
        raise ValueError("packet is too short")

    if data[0] != SOP1 or data[1] not in (SOP2_RESPONSE, SOP2_ASYNC):
        raise ValueError(f"bad start of packet: {bytes(data[:2]).hex()}")

    if len(data) != _packet_size(data):
        raise ValueError(
            f"expecting {_packet_size(data)} bytes but received {len(data)}"
        )

    checksum = sum_complement(data[2:-1])

    if checksum != data[-1]:
        raise ValueError(
            f"bad checksum: expecting {hex(checksum)} but received {hex(data[-1])}"
        )

    payload = bytes(data[_HEADER_SIZE:-1])

    if data[1] == SOP2_RESPONSE:
        return Response(ResponseCode(data[2]), data[3], payload)

    return AsyncMessage(AsyncMessageKind(data[2]), payload)


class ResponseParser:
    """
    Reassembles packets from notification data.

    BLE notifications are limited to the negotiated MTU, so one packet may be
    split across several notifications and one notification may hold the end
    of one packet and the start of the next.
    """

    def __init__(self) -> None:
        self._buf = bytearray()

    def reset(self) -> None:
        """Discards any partially received packet."""
        self._buf.clear()

    def feed(self, data: bytes) -> List[Packet]:
        """
        Adds received data and returns all packets completed by it.

        Malformed packets are logged and dropped.

        Args:
            data: The value of one notification.

        Returns:
            The completed packets in the order they were received.
        """
        self._buf.extend(data)
        packets = []

        while True:
            # resynchronize on the start of a packet
            start = self._buf.find(SOP1)

            if start < 0:
                self._buf.clear()
                break

            del self._buf[:start]

            if len(self._buf) < 2:
                break

            if self._buf[1] not in (SOP2_RESPONSE, SOP2_ASYNC):
                del self._buf[0]
                continue

            if len(self._buf) < _HEADER_SIZE:
                break

            size = _packet_size(self._buf)

            if size > _HEADER_SIZE + MAX_ASYNC_DATA_SIZE:
                header = bytes(self._buf[:_HEADER_SIZE])
                logger.warning("dropping header %s: length too big", header.hex())
                del self._buf[0]
                continue

            if len(self._buf) < size:
                break

            raw = bytes(self._buf[:size])
            del self._buf[:size]

            try:
                packets.append(parse_packet(raw))
            except ValueError as ex:
                logger.warning("dropping packet %s: %s", raw.hex(), ex)

        return packets


###############################################################################
# Reply payloads
###############################################################################


class PowerState(NamedTuple):
    """Payload of the reply to :func:`get_power_state`."""

    record_version: int
    state: BatteryState
    voltage: float
    """Battery voltage in volts."""
    charges: int
    """Number of battery recharges in the life of the robot."""
    seconds_since_charge: int


def unpack_rgb(data: bytes) -> int:
    """
    Unpacks the reply to :func:`get_rgb`.

    Returns:
        The color packed as ``0xRRGGBB``.
    """
    r, g, b = struct.unpack_from(">BBB", data)
    return (r << 16) | (g << 8) | b


def unpack_chassis_id(data: bytes) -> int:
    """Unpacks the reply to :func:`get_chassis_id`."""
    (chassis_id,) = struct.unpack_from(">H", data)
    return chassis_id


def unpack_device_mode(data: bytes) -> DeviceMode:
    """Unpacks the reply to :func:`get_device_mode`."""
    (mode,) = struct.unpack_from(">B", data)
    return DeviceMode(mode)


def unpack_power_state(data: bytes) -> PowerState:
    """Unpacks the reply to :func:`get_power_state`."""
    record_version, state, voltage, charges, seconds = struct.unpack_from(
        ">BBHHH", data
    )
    return PowerState(
        record_version, BatteryState(state), voltage / 100, charges, seconds
    )
