"""Tests for the BB-8 driver."""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock, call

import pytest
from bleak.exc import BleakError
from reactivex.subject import Subject

from bb8driver.ble.sphero import (
    BLE_ANTI_DOS,
    BLE_SERVICE,
    BLE_TX_POWER,
    BLE_WAKE,
    ROBOT_COMMAND,
    ROBOT_NOTIFY,
    ROBOT_SERVICE,
)
from bb8driver.ble.sphero.bytecodes import (
    AsyncMessageKind,
    BatteryState,
    DeviceMode,
    MotorMode,
    ResponseCode,
    RollState,
    SpheroCommand,
)
from bb8driver.ble.sphero.packets import AsyncMessage, PacketOptions, Response
from bb8driver.driver import BB8Driver, Driver, SpheroResponseError
from bb8driver.tools.checksum import sum_complement

PACKET = b"\xff\xfe\x02\x30"


@pytest.fixture
def connection():
    connection = MagicMock()
    connection.write_service_characteristic = AsyncMock(return_value="written")
    connection.read_service_characteristic = AsyncMock(return_value=b"\x01")
    connection.get_characteristic = AsyncMock(return_value=Subject())
    return connection


@pytest.fixture
def encoder():
    encoder = MagicMock()

    for name in [
        "set_rgb",
        "roll",
        "set_raw_motor_values",
        "set_stabilization",
        "set_data_streaming",
        "get_device_mode",
        "get_rgb",
        "get_chassis_id",
        "get_power_state",
    ]:
        getattr(encoder, name).return_value = PACKET

    return encoder


@pytest.fixture
def driver(connection, encoder):
    return BB8Driver(connection, encoder)


class TestLifecycle:
    def test_driver_is_abstract(self):
        with pytest.raises(TypeError):
            Driver()

    def test_initial_heading(self, driver: BB8Driver):
        assert driver.heading == 0

    @pytest.mark.asyncio
    async def test_start(self, driver: BB8Driver, connection):
        callback = MagicMock()
        await driver.start(callback)
        callback.assert_called_once_with()
        connection.write_service_characteristic.assert_not_called()

    @pytest.mark.asyncio
    async def test_halt(self, driver: BB8Driver, connection):
        callback = MagicMock()
        await driver.halt(callback)
        callback.assert_called_once_with()
        connection.write_service_characteristic.assert_not_called()

    def test_commands(self, driver: BB8Driver):
        assert set(driver.commands) == {
            "wake",
            "setTXPower",
            "devModeOn",
            "setAntiDos",
            "setRGB",
            "roll",
            "stop",
            "setRawMotorValues",
            "setStabilization",
            "setDataStreaming",
            "getDeviceMode",
            "getRGB",
            "getChassisID",
            "getPowerState",
        }
        assert driver.commands["setRGB"] == driver.set_rgb
        assert driver.commands["getChassisID"] == driver.get_chassis_id

    @pytest.mark.asyncio
    async def test_command_is_invocable(self, driver: BB8Driver, connection):
        await driver.commands["setTXPower"](3)
        connection.write_service_characteristic.assert_awaited_once_with(
            BLE_SERVICE, BLE_TX_POWER, b"\x03"
        )


class TestBleCommands:
    @pytest.mark.asyncio
    async def test_wake(self, driver: BB8Driver, connection):
        callback = MagicMock()
        result = await driver.wake(callback)

        connection.write_service_characteristic.assert_awaited_once_with(
            BLE_SERVICE, BLE_WAKE, b"\x01"
        )
        callback.assert_called_once_with(None, "written")
        assert result == "written"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("level", [0, 5, 7])
    async def test_set_tx_power(self, driver: BB8Driver, connection, level: int):
        await driver.set_tx_power(level)

        connection.write_service_characteristic.assert_awaited_once_with(
            BLE_SERVICE, BLE_TX_POWER, bytes([level])
        )

    @pytest.mark.asyncio
    async def test_set_anti_dos(self, driver: BB8Driver, connection):
        await driver.set_anti_dos()

        connection.write_service_characteristic.assert_awaited_once_with(
            BLE_SERVICE, BLE_ANTI_DOS, b"011i3"
        )

    @pytest.mark.asyncio
    async def test_dev_mode_on(self, driver: BB8Driver, connection):
        callback = MagicMock()
        result = await driver.dev_mode_on(callback)

        assert connection.write_service_characteristic.await_args_list == [
            call(BLE_SERVICE, BLE_ANTI_DOS, b"011i3"),
            call(BLE_SERVICE, BLE_TX_POWER, b"\x07"),
            call(BLE_SERVICE, BLE_WAKE, b"\x01"),
        ]
        callback.assert_called_once_with(None, "written")
        assert result == "written"

    @pytest.mark.asyncio
    async def test_dev_mode_on_waits_for_each_step(self, driver: BB8Driver, connection):
        in_flight = 0
        overlapped = False

        async def write(service, characteristic, data):
            nonlocal in_flight, overlapped
            in_flight += 1
            overlapped = overlapped or in_flight > 1
            await asyncio.sleep(0)
            in_flight -= 1

        connection.write_service_characteristic.side_effect = write
        await driver.dev_mode_on()

        assert connection.write_service_characteristic.await_count == 3
        assert not overlapped

    @pytest.mark.asyncio
    async def test_dev_mode_on_stops_on_error(self, driver: BB8Driver, connection):
        error = BleakError("tx power")
        connection.write_service_characteristic.side_effect = [None, error, None]
        callback = MagicMock()

        result = await driver.dev_mode_on(callback)

        assert connection.write_service_characteristic.await_count == 2
        callback.assert_called_once_with(error, None)
        assert result is None


class TestRobotCommands:
    @pytest.mark.asyncio
    async def test_set_rgb(self, driver: BB8Driver, connection, encoder):
        await driver.set_rgb(0xFF0000, True)

        encoder.set_rgb.assert_called_once_with(
            0xFF0000, True, PacketOptions(reset_timeout=True)
        )
        connection.write_service_characteristic.assert_awaited_once_with(
            ROBOT_SERVICE, ROBOT_COMMAND, PACKET
        )

    @pytest.mark.asyncio
    async def test_roll(self, driver: BB8Driver, connection, encoder):
        await driver.roll(100, 90, RollState.GO)

        assert driver.heading == 90
        encoder.roll.assert_called_once_with(
            100, 90, RollState.GO, PacketOptions(reset_timeout=True)
        )
        connection.write_service_characteristic.assert_awaited_once_with(
            ROBOT_SERVICE, ROBOT_COMMAND, PACKET
        )

    @pytest.mark.asyncio
    async def test_stop_keeps_heading(self, driver: BB8Driver, encoder):
        await driver.roll(100, 90, 1)
        await driver.stop()

        assert encoder.roll.call_args == call(
            0, 90, RollState.GO, PacketOptions(reset_timeout=True)
        )
        assert driver.heading == 90

    @pytest.mark.asyncio
    async def test_stop_before_roll(self, driver: BB8Driver, encoder):
        await driver.stop()

        encoder.roll.assert_called_once_with(
            0, 0, RollState.GO, PacketOptions(reset_timeout=True)
        )

    @pytest.mark.asyncio
    async def test_set_raw_motor_values(self, driver: BB8Driver, connection, encoder):
        await driver.set_raw_motor_values(
            MotorMode.FORWARD, 128, MotorMode.REVERSE, 64
        )

        encoder.set_raw_motor_values.assert_called_once_with(
            MotorMode.FORWARD,
            128,
            MotorMode.REVERSE,
            64,
            PacketOptions(reset_timeout=True),
        )
        connection.write_service_characteristic.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_set_stabilization(self, driver: BB8Driver, encoder):
        await driver.set_stabilization(False)

        encoder.set_stabilization.assert_called_once_with(
            False, PacketOptions(reset_timeout=True)
        )

    @pytest.mark.asyncio
    async def test_set_data_streaming(self, driver: BB8Driver, encoder):
        await driver.set_data_streaming(10, 1, 0xFF, 0)

        encoder.set_data_streaming.assert_called_once_with(
            10,
            1,
            0xFF,
            0,
            None,
            PacketOptions(reset_timeout=True, request_acknowledgement=True),
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "method",
        ["get_device_mode", "get_rgb", "get_chassis_id", "get_power_state"],
    )
    async def test_queries(self, driver: BB8Driver, connection, encoder, method):
        callback = MagicMock()
        result = await getattr(driver, method)(callback)

        getattr(encoder, method).assert_called_once_with(
            PacketOptions(reset_timeout=True, request_acknowledgement=True)
        )
        connection.write_service_characteristic.assert_awaited_once_with(
            ROBOT_SERVICE, ROBOT_COMMAND, PACKET
        )
        callback.assert_called_once_with(None, "written")
        assert result == "written"


class TestCallbacks:
    @pytest.mark.asyncio
    async def test_error_is_forwarded_unchanged(self, driver: BB8Driver, connection):
        error = BleakError("write failed")
        connection.write_service_characteristic.side_effect = error
        callback = MagicMock()

        result = await driver.set_rgb(0x00FF00, False, callback)

        callback.assert_called_once()
        assert callback.call_args.args[0] is error
        assert callback.call_args.args[1] is None
        assert result is None

    @pytest.mark.asyncio
    async def test_error_without_callback_is_logged(
        self, driver: BB8Driver, connection, caplog: pytest.LogCaptureFixture
    ):
        connection.write_service_characteristic.side_effect = BleakError("boom")

        with caplog.at_level(logging.WARNING, logger="bb8driver.driver"):
            result = await driver.wake()

        assert result is None
        assert "boom" in caplog.text

    @pytest.mark.asyncio
    async def test_non_callable_callback_is_ignored(
        self, driver: BB8Driver, connection
    ):
        result = await driver.wake("not a function")

        assert result == "written"
        connection.write_service_characteristic.assert_awaited_once()


class TestGetServiceCharacteristic:
    @pytest.mark.asyncio
    async def test_success(self, driver: BB8Driver, connection):
        callback = MagicMock()
        await driver.get_service_characteristic(
            ROBOT_SERVICE, ROBOT_NOTIFY, callback
        )

        connection.get_characteristic.assert_awaited_once_with(
            ROBOT_SERVICE, ROBOT_NOTIFY
        )
        callback.assert_called_once_with(
            None, connection.get_characteristic.return_value
        )

    @pytest.mark.asyncio
    async def test_failure(self, driver: BB8Driver, connection):
        error = BleakError("no such characteristic")
        connection.get_characteristic.side_effect = error
        callback = MagicMock()

        await driver.get_service_characteristic(
            ROBOT_SERVICE, ROBOT_NOTIFY, callback
        )

        callback.assert_called_once_with(error)

    @pytest.mark.asyncio
    async def test_read(self, driver: BB8Driver, connection):
        assert (
            await driver._read_service_characteristic(BLE_SERVICE, BLE_WAKE)
            == b"\x01"
        )


def reply_to_writes(connection, notifier: Subject, *replies: bytes) -> None:
    """Makes the fake robot notify ``replies`` in response to a write."""

    async def write(service, characteristic, data):
        for reply in replies:
            notifier.on_next(reply)

    connection.write_service_characteristic.side_effect = write


class TestNotifications:
    @pytest.fixture
    def notifier(self, connection) -> Subject:
        notifier = Subject()
        connection.get_characteristic.return_value = notifier
        return notifier

    @pytest.fixture
    def driver(self, connection) -> BB8Driver:
        return BB8Driver(connection, response_timeout=0.1)

    @pytest.mark.asyncio
    async def test_enable(self, driver: BB8Driver, connection, notifier: Subject):
        callback = MagicMock()
        await driver.enable_notifications(callback)

        assert driver.notifications_enabled
        callback.assert_called_once_with(None, notifier)

        # second call does not subscribe again
        await driver.enable_notifications()
        connection.get_characteristic.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_enable_failure(self, driver: BB8Driver, connection):
        error = BleakError("no notify")
        connection.get_characteristic.side_effect = error
        callback = MagicMock()

        await driver.enable_notifications(callback)

        assert not driver.notifications_enabled
        callback.assert_called_once_with(error, None)

    @pytest.mark.asyncio
    async def test_disable(self, driver: BB8Driver, notifier: Subject):
        await driver.enable_notifications()
        driver.disable_notifications()

        assert not driver.notifications_enabled
        received = []
        driver.response_observable.subscribe(received.append)
        notifier.on_next(bytes.fromhex("ffff040101f9"))
        assert received == []

    @pytest.mark.asyncio
    async def test_observables(self, driver: BB8Driver, notifier: Subject):
        await driver.enable_notifications()

        responses = []
        messages = []
        driver.response_observable.subscribe(responses.append)
        driver.async_message_observable.subscribe(messages.append)

        notifier.on_next(bytes.fromhex("ffff04"))
        notifier.on_next(bytes.fromhex("0101f9fffe030003aabb94"))

        assert responses == [Response(ResponseCode.BAD_COMMAND, 0x01, b"")]
        assert messages == [
            AsyncMessage(AsyncMessageKind.SENSOR_DATA_STREAMING, b"\xaa\xbb")
        ]

    @pytest.mark.asyncio
    async def test_get_device_mode(
        self, driver: BB8Driver, connection, notifier: Subject
    ):
        await driver.enable_notifications()
        reply_to_writes(connection, notifier, bytes.fromhex("ffff00000201fc"))
        callback = MagicMock()

        mode = await driver.get_device_mode(callback)

        assert mode is DeviceMode.USER_HACK
        callback.assert_called_once_with(None, DeviceMode.USER_HACK)
        connection.write_service_characteristic.assert_awaited_once_with(
            ROBOT_SERVICE, ROBOT_COMMAND, bytes.fromhex("ffff02440001b8")
        )

    @pytest.mark.asyncio
    async def test_get_rgb(self, driver: BB8Driver, connection, notifier: Subject):
        await driver.enable_notifications()
        reply_to_writes(connection, notifier, bytes.fromhex("ffff000004ff80007c"))

        assert await driver.get_rgb() == 0xFF8000

    @pytest.mark.asyncio
    async def test_get_chassis_id(
        self, driver: BB8Driver, connection, notifier: Subject
    ):
        await driver.enable_notifications()
        reply_to_writes(connection, notifier, bytes.fromhex("ffff0000031234b6"))

        assert await driver.get_chassis_id() == 0x1234

    @pytest.mark.asyncio
    async def test_get_power_state(
        self, driver: BB8Driver, connection, notifier: Subject
    ):
        await driver.enable_notifications()
        reply_to_writes(
            connection, notifier, bytes.fromhex("ffff000009010202ee000c003cbb")
        )

        state = await driver.get_power_state()

        assert state.state is BatteryState.OK
        assert state.voltage == 7.5
        assert state.charges == 12
        assert state.seconds_since_charge == 60

    @pytest.mark.asyncio
    async def test_error_reply(self, driver: BB8Driver, connection, notifier: Subject):
        await driver.enable_notifications()
        reply_to_writes(connection, notifier, bytes.fromhex("ffff040001fa"))
        callback = MagicMock()

        result = await driver.get_chassis_id(callback)

        assert result is None
        error, data = callback.call_args.args
        assert isinstance(error, SpheroResponseError)
        assert error.code is ResponseCode.BAD_COMMAND
        assert data is None

    @pytest.mark.asyncio
    async def test_timeout(self, driver: BB8Driver, connection, notifier: Subject):
        await driver.enable_notifications()
        callback = MagicMock()

        result = await driver.get_rgb(callback)

        assert result is None
        error, data = callback.call_args.args
        assert isinstance(error, asyncio.TimeoutError)

    @pytest.mark.asyncio
    async def test_write_failure(
        self, driver: BB8Driver, connection, notifier: Subject
    ):
        await driver.enable_notifications()
        error = BleakError("write failed")
        connection.write_service_characteristic.side_effect = error
        callback = MagicMock()

        await driver.get_power_state(callback)

        callback.assert_called_once_with(error, None)

    @pytest.mark.asyncio
    async def test_commands_do_not_wait(
        self, driver: BB8Driver, connection, notifier: Subject
    ):
        await driver.enable_notifications()
        callback = MagicMock()

        await driver.set_rgb(0x0000FF, False, callback)

        callback.assert_called_once_with(None, "written")

    @pytest.mark.asyncio
    async def test_query_after_acknowledged_command(
        self, driver: BB8Driver, connection, notifier: Subject
    ):
        """A late acknowledgement of a command is not taken as the query reply."""
        await driver.enable_notifications()

        def make_reply(sequence: int, data: bytes) -> bytes:
            body = bytes([ResponseCode.OK, sequence, len(data) + 1]) + data
            return b"\xff\xff" + body + bytes([sum_complement(body)])

        async def write(service, characteristic, data):
            # the robot acknowledges every packet some time after the write
            sequence = data[4]
            payload = b"\x12\x34\x56" if data[3] == SpheroCommand.GET_RGB_LED else b""
            asyncio.get_running_loop().call_later(
                0.01, notifier.on_next, make_reply(sequence, payload)
            )

        connection.write_service_characteristic.side_effect = write
        callback = MagicMock()

        await driver.set_data_streaming(10, 1, 0xFF, 0)
        await driver.get_rgb(callback)

        callback.assert_called_once_with(None, 0x123456)
        writes = connection.write_service_characteristic.await_args_list
        assert [c.args[2][4] for c in writes] == [0, 1]

    @pytest.mark.asyncio
    async def test_reply_with_other_sequence_is_ignored(
        self, driver: BB8Driver, connection, notifier: Subject
    ):
        await driver.enable_notifications()
        # reply to sequence 3 only
        reply_to_writes(connection, notifier, bytes.fromhex("ffff0003031234b3"))
        callback = MagicMock()

        await driver.get_chassis_id(callback)

        error, data = callback.call_args.args
        assert isinstance(error, asyncio.TimeoutError)

    @pytest.mark.asyncio
    async def test_notifier_completed(
        self, driver: BB8Driver, connection, notifier: Subject
    ):
        await driver.enable_notifications()
        notifier.on_completed()

        assert not driver.notifications_enabled

        # the connection hands out a new notifier after reconnecting
        new_notifier = Subject()
        connection.get_characteristic.return_value = new_notifier
        await driver.enable_notifications()

        assert driver.notifications_enabled
        assert connection.get_characteristic.await_count == 2

        reply_to_writes(connection, new_notifier, bytes.fromhex("ffff00000201fc"))
        assert await driver.get_device_mode() is DeviceMode.USER_HACK

    @pytest.mark.asyncio
    async def test_notifier_error(self, driver: BB8Driver, notifier: Subject):
        await driver.enable_notifications()
        notifier.on_error(BleakError("disconnected"))

        assert not driver.notifications_enabled


class TestSequence:
    @pytest.mark.asyncio
    async def test_acknowledged_packets_are_numbered(
        self, driver: BB8Driver, encoder
    ):
        await driver.get_rgb()
        await driver.set_data_streaming(10, 1, 0xFF, 0)
        await driver.get_power_state()

        assert encoder.get_rgb.call_args.args[0].sequence == 0
        assert encoder.set_data_streaming.call_args.args[5].sequence == 1
        assert encoder.get_power_state.call_args.args[0].sequence == 2

    @pytest.mark.asyncio
    async def test_commands_are_not_numbered(self, driver: BB8Driver, encoder):
        await driver.set_rgb(0xFF0000, False)
        await driver.get_rgb()

        assert encoder.set_rgb.call_args.args[2].sequence == 0
        assert encoder.get_rgb.call_args.args[0].sequence == 0

    @pytest.mark.asyncio
    async def test_wraps(self, driver: BB8Driver, encoder):
        for _ in range(257):
            await driver.get_chassis_id()

        assert encoder.get_chassis_id.call_args_list[255].args[0].sequence == 255
        assert encoder.get_chassis_id.call_args_list[256].args[0].sequence == 0
