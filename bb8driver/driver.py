# SPDX-License-Identifier: MIT
# Copyright (c) 2015-2024 The bb8driver Authors

"""
Driver that exposes the BB-8 command surface.

Each operation builds a payload (using the :mod:`bb8driver.ble.sphero.packets`
encoder for robot commands), performs exactly one characteristic write on the
connection it was given and hands the result to an optional callback.
"""

import asyncio
import functools
import logging
from abc import ABC, abstractmethod
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Tuple,
    Union,
)

import reactivex.operators as op
from reactivex import Observable
from reactivex.abc import DisposableBase
from reactivex.subject import Subject

from bb8driver.ble.sphero import (
    ANTI_DOS,
    ANTI_DOS_KEY,
    COMMAND,
    DEV_MODE_TX_POWER,
    NOTIFY,
    TX_POWER,
    WAKE,
)
from bb8driver.ble.sphero import packets
from bb8driver.ble.sphero.bytecodes import RollState
from bb8driver.ble.sphero.packets import (
    AsyncMessage,
    PacketOptions,
    Response,
    ResponseParser,
)

logger = logging.getLogger(__name__)

Callback = Callable[..., None]
"""
Completion handler. Called as ``callback(error, data)`` where ``error`` is
``None`` on success.
"""

_COMMAND_OPTIONS = PacketOptions(reset_timeout=True)


class SpheroResponseError(RuntimeError):
    """The robot replied to a command with an error code."""

    def __init__(self, response: Response) -> None:
        super().__init__(f"command failed: {response.code.name}")
        self.code = response.code
        self.response = response


class Driver(ABC):
    """
    Lifecycle contract consumed by an orchestration layer.

    Implementations publish their invocable operations in :attr:`commands`.
    """

    commands: Dict[str, Callable[..., Awaitable[Any]]]
    """Operation name to bound coroutine function."""

    @abstractmethod
    async def start(self, callback: Callable[[], None]) -> None:
        """Called when the orchestration layer starts the device."""
        pass

    @abstractmethod
    async def halt(self, callback: Callable[[], None]) -> None:
        """Called when the orchestration layer stops the device."""
        pass


def _to_bytes(value: Union[int, bytes, Sequence[int]]) -> bytes:
    if isinstance(value, int):
        return bytes([value])

    return bytes(value)


class BB8Driver(Driver):
    """
    Sends commands to a Sphero BB-8.

    Every operation is a coroutine that accepts an optional ``callback``. If
    the callback is callable it receives ``(error, data)`` from the transport.
    Otherwise a successful result is only returned and a failure is logged and
    discarded. Transport errors are never raised or wrapped.

    Operations are not serialized. :attr:`heading` is shared by concurrent
    :meth:`roll` calls and the last one wins.
    """

    heading: int
    """The heading of the last :meth:`roll` command. Used by :meth:`stop`."""

    def __init__(self, connection, encoder=packets, response_timeout: float = 1.0):
        """
        Args:
            connection: The transport. See :mod:`bb8driver.connections`. The
                driver does not connect or disconnect it.
            encoder: Provides the packet encoder functions. Defaults to
                :mod:`bb8driver.ble.sphero.packets`.
            response_timeout: How long query operations wait for a reply when
                notifications are enabled.
        """
        self.connection = connection
        self.encoder = encoder
        self.response_timeout = response_timeout
        self.heading = 0

        self.response_observable: Subject[Response] = Subject()
        """Synchronous replies received on the notify characteristic."""

        self.async_message_observable: Subject[AsyncMessage] = Subject()
        """Asynchronous messages received on the notify characteristic."""

        self._parser = ResponseParser()
        self._notify_subscription: Optional[DisposableBase] = None
        self._sequence = 0

        self.commands = {
            "wake": self.wake,
            "setTXPower": self.set_tx_power,
            "devModeOn": self.dev_mode_on,
            "setAntiDos": self.set_anti_dos,
            "setRGB": self.set_rgb,
            "roll": self.roll,
            "stop": self.stop,
            "setRawMotorValues": self.set_raw_motor_values,
            "setStabilization": self.set_stabilization,
            "setDataStreaming": self.set_data_streaming,
            "getDeviceMode": self.get_device_mode,
            "getRGB": self.get_rgb,
            "getChassisID": self.get_chassis_id,
            "getPowerState": self.get_power_state,
        }

    async def start(self, callback: Callable[[], None]) -> None:
        logger.debug("BB8Driver.start")
        callback()

    async def halt(self, callback: Callable[[], None]) -> None:
        logger.debug("BB8Driver.halt")
        callback()

    # BLE commands

    async def wake(self, callback: Optional[Callback] = None) -> Any:
        """
        Tells the robot to wake up.

        Args:
            callback: Called when the robot is awake.
        """
        logger.debug("BB8Driver.wake")
        return await self._write_service_characteristic(
            *WAKE, 1, callback
        )

    async def set_tx_power(
        self, level: int, callback: Optional[Callback] = None
    ) -> Any:
        """
        Sets the radio transmit power.

        Uses more battery, but gives longer range.

        Args:
            level: The power level.
            callback: Called when done.
        """
        logger.debug("BB8Driver.setTXPower (level=%s)", level)
        return await self._write_service_characteristic(
            *TX_POWER, level, callback
        )

    async def dev_mode_on(self, callback: Optional[Callback] = None) -> Any:
        """
        Enables developer mode.

        This sends the anti-DoS string, sets the transmit power to 7 and wakes
        the robot, in that order. Each step waits for the previous one. If a
        step fails, the remaining steps are skipped and the callback receives
        that step's error. Otherwise it receives the result of the wake step.

        Args:
            callback: Called when done.
        """
        logger.debug("BB8Driver.devModeOn")

        steps = [
            self.set_anti_dos,
            functools.partial(self.set_tx_power, DEV_MODE_TX_POWER),
            self.wake,
        ]

        data = None

        for step in steps:
            error, data = await _capture(step)

            if error is not None:
                return _deliver(callback, error, None)

        return _deliver(callback, None, data)

    async def set_anti_dos(self, callback: Optional[Callback] = None) -> Any:
        """
        Sends the anti-DoS string that is required for developer mode.

        Args:
            callback: Called when done.
        """
        logger.debug("BB8Driver.setAntiDos")
        value = [ord(c) for c in ANTI_DOS_KEY]
        return await self._write_service_characteristic(
            *ANTI_DOS, value, callback
        )

    # Robot commands

    async def set_rgb(
        self, color: int, persist: bool, callback: Optional[Callback] = None
    ) -> Any:
        """
        Sets the color of the main LED.

        Args:
            color: The color packed as ``0xRRGGBB``.
            persist: Whether the color persists through power cycles.
            callback: Called when done.
        """
        logger.debug("BB8Driver.setRGB (color=%s, persist=%s)", color, persist)
        packet = self.encoder.set_rgb(color, persist, _COMMAND_OPTIONS)
        return await self._write_service_characteristic(
            *COMMAND, packet, callback
        )

    async def roll(
        self,
        speed: int,
        heading: int,
        state: int,
        callback: Optional[Callback] = None,
    ) -> Any:
        """
        Rolls at a speed and heading.

        Args:
            speed: Speed to roll at.
            heading: Heading to roll at. Remembered for :meth:`stop`.
            state: A :class:`.RollState` value.
            callback: Called when done.
        """
        logger.debug(
            "BB8Driver.roll (speed=%s, heading=%s, state=%s)", speed, heading, state
        )
        self.heading = heading
        packet = self.encoder.roll(speed, heading, state, _COMMAND_OPTIONS)
        return await self._write_service_characteristic(
            *COMMAND, packet, callback
        )

    async def stop(self, callback: Optional[Callback] = None) -> Any:
        """
        Stops rolling, keeping the heading of the last :meth:`roll`.

        Args:
            callback: Called when done.
        """
        logger.debug("BB8Driver.stop")
        return await self.roll(0, self.heading, RollState.GO, callback)

    async def set_raw_motor_values(
        self,
        left_mode: int,
        left_power: int,
        right_mode: int,
        right_power: int,
        callback: Optional[Callback] = None,
    ) -> Any:
        """
        Controls both motors directly instead of through the stabilization
        system.

        Each motor takes a :class:`.MotorMode` and a power from 0 to 255. The
        robot disables stabilization unless both modes are
        :attr:`.MotorMode.IGNORE`, so re-enable it with
        :meth:`set_stabilization` when done.

        Args:
            left_mode: Left motor mode.
            left_power: Left motor power.
            right_mode: Right motor mode.
            right_power: Right motor power.
            callback: Called when done.
        """
        logger.debug(
            "BB8Driver.setRawMotorValues (%s, %s, %s, %s)",
            left_mode,
            left_power,
            right_mode,
            right_power,
        )
        packet = self.encoder.set_raw_motor_values(
            left_mode, left_power, right_mode, right_power, _COMMAND_OPTIONS
        )
        return await self._write_service_characteristic(
            *COMMAND, packet, callback
        )

    async def set_stabilization(
        self, enable: Union[bool, int], callback: Optional[Callback] = None
    ) -> Any:
        """
        Enables or disables auto-stabilization.

        Often used after :meth:`set_raw_motor_values`.

        Args:
            enable: Stabilization enable mode.
            callback: Called when done.
        """
        logger.debug("BB8Driver.setStabilization (enable=%s)", enable)
        packet = self.encoder.set_stabilization(enable, _COMMAND_OPTIONS)
        return await self._write_service_characteristic(
            *COMMAND, packet, callback
        )

    async def set_data_streaming(
        self,
        sensor_rate_divisor: int,
        frames: int,
        mask: int,
        packet_count: int,
        mask2: Optional[int] = None,
        callback: Optional[Callback] = None,
    ) -> Any:
        """
        Configures sensor data streaming.

        Streamed frames arrive on :attr:`async_message_observable` once
        :meth:`enable_notifications` has been called.

        Args:
            sensor_rate_divisor: Divisor of the sampling rate, e.g. 2 or 10.
            frames: Frames per packet, e.g. 10.
            mask: Data source selector, e.g. 255 or 4294967295.
            packet_count: Number of packets, 0 for unlimited.
            mask2: Optional second data source selector.
            callback: Called when done.
        """
        logger.debug("BB8Driver.setDataStreaming")
        options = self._next_ack_options()
        packet = self.encoder.set_data_streaming(
            sensor_rate_divisor, frames, mask, packet_count, mask2, options
        )
        return await self._write_service_characteristic(
            *COMMAND, packet, callback
        )

    async def get_device_mode(self, callback: Optional[Callback] = None) -> Any:
        logger.debug("BB8Driver.getDeviceMode")
        options = self._next_ack_options()
        packet = self.encoder.get_device_mode(options)
        return await self._query(
            packet, options.sequence, packets.unpack_device_mode, callback
        )

    async def get_rgb(self, callback: Optional[Callback] = None) -> Any:
        logger.debug("BB8Driver.getRGB")
        options = self._next_ack_options()
        packet = self.encoder.get_rgb(options)
        return await self._query(
            packet, options.sequence, packets.unpack_rgb, callback
        )

    async def get_power_state(self, callback: Optional[Callback] = None) -> Any:
        logger.debug("BB8Driver.getPowerState")
        options = self._next_ack_options()
        packet = self.encoder.get_power_state(options)
        return await self._query(
            packet, options.sequence, packets.unpack_power_state, callback
        )

    async def get_chassis_id(self, callback: Optional[Callback] = None) -> Any:
        logger.debug("BB8Driver.getChassisID")
        options = self._next_ack_options()
        packet = self.encoder.get_chassis_id(options)
        return await self._query(
            packet, options.sequence, packets.unpack_chassis_id, callback
        )

    # Replies

    @property
    def notifications_enabled(self) -> bool:
        return self._notify_subscription is not None

    def _next_ack_options(self) -> PacketOptions:
        """
        Gets options for a packet that the robot replies to, with a sequence
        number that is not shared with the previous 255 such packets.
        """
        options = PacketOptions(
            reset_timeout=True, request_acknowledgement=True, sequence=self._sequence
        )
        self._sequence = (self._sequence + 1) & 0xFF
        return options

    async def enable_notifications(self, callback: Optional[Callback] = None) -> Any:
        """
        Subscribes to the robot notify characteristic.

        Afterwards, replies are published on :attr:`response_observable` and
        :attr:`async_message_observable` and the query operations deliver the
        decoded reply instead of the write result.

        Notifications stay enabled until :meth:`disable_notifications` is
        called or the notifier ends (e.g. when the robot disconnects).

        Args:
            callback: Called with ``(error, notifier)``.
        """
        logger.debug("BB8Driver.enableNotifications")

        if self._notify_subscription is not None:
            return _deliver(callback, None, None)

        outcome: List[Tuple] = []
        await self.get_service_characteristic(
            *NOTIFY, lambda *args: outcome.append(args)
        )

        if len(outcome[0]) == 1:
            return _deliver(callback, outcome[0][0], None)

        _, notifier = outcome[0]
        self._parser.reset()
        self._notify_subscription = notifier.subscribe(
            self._handle_notify,
            on_error=lambda ex: self._handle_notify_end(),
            on_completed=self._handle_notify_end,
        )

        return _deliver(callback, None, notifier)

    def disable_notifications(self) -> None:
        """Stops processing data from the notify characteristic."""
        if self._notify_subscription is not None:
            self._notify_subscription.dispose()
            self._notify_subscription = None

    def _handle_notify(self, data: bytes) -> None:
        for packet in self._parser.feed(data):
            if isinstance(packet, Response):
                self.response_observable.on_next(packet)
            else:
                self.async_message_observable.on_next(packet)

    def _handle_notify_end(self) -> None:
        logger.debug("notifications ended")
        self._notify_subscription = None
        self._parser.reset()

    async def _query(
        self,
        packet: bytes,
        sequence: int,
        unpack: Callable[[bytes], Any],
        callback: Optional[Callback],
    ) -> Any:
        """
        Writes a query packet. If notifications are enabled, waits for the
        reply with the same ``sequence`` and delivers the unpacked value.
        """
        if not self.notifications_enabled:
            return await self._write_service_characteristic(
                *COMMAND, packet, callback
            )

        replies: asyncio.Queue[Response] = asyncio.Queue()

        # must subscribe before writing
        with self.response_observable.pipe(
            op.filter(lambda r: r.sequence == sequence)
        ).subscribe(replies.put_nowait):
            try:
                await self.connection.write_service_characteristic(
                    *COMMAND, _to_bytes(packet)
                )
                response = await asyncio.wait_for(
                    replies.get(), self.response_timeout
                )

                if not response.ok:
                    raise SpheroResponseError(response)

                value = unpack(response.data)
            except Exception as ex:
                return _deliver(callback, ex, None)

        return _deliver(callback, None, value)

    # BLE interface

    async def _write_service_characteristic(
        self,
        service: str,
        characteristic: str,
        value: Union[int, bytes, Sequence[int]],
        callback: Optional[Callback] = None,
    ) -> Any:
        """
        Writes a value to a characteristic.

        Args:
            service: The service UUID.
            characteristic: The characteristic UUID.
            value: A single byte value, a sequence of byte values or a packet.
            callback: Called with ``(error, data)`` when done, if callable.

        Returns:
            The transport result or ``None`` on failure.
        """
        data = _to_bytes(value)

        try:
            result = await self.connection.write_service_characteristic(
                service, characteristic, data
            )
        except Exception as ex:
            return _deliver(callback, ex, None)

        return _deliver(callback, None, result)

    async def _read_service_characteristic(
        self, service: str, characteristic: str
    ) -> bytes:
        return await self.connection.read_service_characteristic(
            service, characteristic
        )

    async def get_service_characteristic(
        self, service: str, characteristic: str, callback: Callback
    ) -> None:
        """
        Looks up a characteristic for notifications.

        Calls ``callback(error)`` on failure or ``callback(None, notifier)``
        on success, where ``notifier`` is an observable of notification
        values.
        """
        try:
            notifier: Observable[bytes] = await self.connection.get_characteristic(
                service, characteristic
            )
        except Exception as ex:
            callback(ex)
        else:
            callback(None, notifier)


def _deliver(
    callback: Optional[Callback], error: Optional[Exception], data: Any
) -> Any:
    if callable(callback):
        callback(error, data)
    elif error is not None:
        logger.warning("discarding error because there is no callback: %r", error)

    return data


async def _capture(
    operation: Callable[..., Awaitable[Any]]
) -> Tuple[Optional[Exception], Any]:
    """Runs an operation and returns the ``(error, data)`` it called back with."""
    outcome: List[Tuple[Optional[Exception], Any]] = []
    await operation(callback=lambda error, data: outcome.append((error, data)))
    return outcome[0]
