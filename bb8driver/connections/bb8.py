# SPDX-License-Identifier: MIT
# Copyright (c) 2024 The bb8driver Authors

import contextlib
import logging
from typing import Dict, Union
from uuid import UUID

from bleak import BleakClient
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.backends.device import BLEDevice
from bleak.exc import BleakError
from reactivex import Observable
from reactivex.subject import BehaviorSubject, Subject

from bb8driver.connections import ConnectionState

logger = logging.getLogger(__name__)


def normalize_uuid(value: str) -> str:
    """
    Converts a UUID in any of the forms accepted by :class:`uuid.UUID` (such as
    the dashless form used in :mod:`bb8driver.ble.sphero`) to the lower case,
    dashed form used by Bleak.
    """
    return str(UUID(value))


class BB8Connection:
    """
    Bluetooth Low Energy transport for a BB-8 using Bleak.

    The owner of the connection calls :meth:`connect` and :meth:`disconnect`;
    drivers only use the characteristic methods.
    """

    _device: Union[BLEDevice, str]
    _client: BleakClient

    def __init__(self, device: Union[BLEDevice, str], response: bool = True):
        """
        Args:
            device: A device found by a Bleak scanner or a Bluetooth address
                (a UUID on Apple platforms).
            response: If true, characteristic writes wait for the GATT write
                response.
        """
        self.connection_state_observable = BehaviorSubject(ConnectionState.DISCONNECTED)
        self._device = device
        self._response = response

        # notification subjects by normalized characteristic UUID
        self._notifiers: Dict[str, Subject] = {}

        def handle_disconnect(_: BleakClient):
            self._handle_disconnect()

        self._client = BleakClient(
            self._device, disconnected_callback=handle_disconnect
        )

    @property
    def is_connected(self) -> bool:
        return self.connection_state_observable.value == ConnectionState.CONNECTED

    def _handle_disconnect(self) -> None:
        logger.info("Disconnected!")

        for subject in self._notifiers.values():
            subject.on_completed()

        self._notifiers.clear()
        self.connection_state_observable.on_next(ConnectionState.DISCONNECTED)

    async def connect(self) -> None:
        """
        Connects to the robot.

        Raises:
            RuntimeError: if not currently disconnected
            BleakError: if connecting failed
        """
        if self.connection_state_observable.value != ConnectionState.DISCONNECTED:
            raise RuntimeError(
                f"attempting to connect with invalid state: {self.connection_state_observable.value}"
            )

        with contextlib.ExitStack() as stack:
            self.connection_state_observable.on_next(ConnectionState.CONNECTING)

            stack.callback(
                self.connection_state_observable.on_next, ConnectionState.DISCONNECTED
            )

            logger.info("Connecting to %s", self._device)
            await self._client.connect()
            logger.info("Connected successfully!")

            self.connection_state_observable.on_next(ConnectionState.CONNECTED)

            # don't unwind on success
            stack.pop_all()

    async def disconnect(self) -> None:
        logger.info("Disconnecting...")

        if self.connection_state_observable.value == ConnectionState.CONNECTED:
            self.connection_state_observable.on_next(ConnectionState.DISCONNECTING)
            await self._client.disconnect()
            # the disconnected callback may not fire on every backend
            if (
                self.connection_state_observable.value
                != ConnectionState.DISCONNECTED
            ):
                self._handle_disconnect()
        else:
            logger.debug("skipping disconnect because not connected")

    def _find_characteristic(
        self, service: str, characteristic: str
    ) -> BleakGATTCharacteristic:
        """
        Looks up a characteristic within a specific service.

        Raises:
            BleakError: the service or characteristic does not exist
        """
        gatt_service = self._client.services.get_service(normalize_uuid(service))

        if gatt_service is None:
            raise BleakError(f"service {service} was not found")

        char = gatt_service.get_characteristic(normalize_uuid(characteristic))

        if char is None:
            raise BleakError(
                f"characteristic {characteristic} was not found in service {service}"
            )

        return char

    async def write_service_characteristic(
        self, service: str, characteristic: str, data: bytes
    ) -> None:
        """
        Writes ``data`` to a characteristic.

        Args:
            service: The service UUID.
            characteristic: The characteristic UUID.
            data: The value to write.
        """
        char = self._find_characteristic(service, characteristic)
        logger.debug("TX %s: %s", characteristic, data.hex())
        return await self._client.write_gatt_char(char, data, response=self._response)

    async def read_service_characteristic(
        self, service: str, characteristic: str
    ) -> bytes:
        """
        Reads the value of a characteristic.

        Args:
            service: The service UUID.
            characteristic: The characteristic UUID.
        """
        char = self._find_characteristic(service, characteristic)
        return bytes(await self._client.read_gatt_char(char))

    async def get_characteristic(
        self, service: str, characteristic: str
    ) -> Observable[bytes]:
        """
        Enables notifications on a characteristic.

        Subsequent calls for the same characteristic return the same observable.
        The observable completes when the robot disconnects.

        Args:
            service: The service UUID.
            characteristic: The characteristic UUID.

        Returns:
            An observable of notification values.
        """
        key = normalize_uuid(characteristic)

        if key in self._notifiers:
            return self._notifiers[key]

        char = self._find_characteristic(service, characteristic)
        subject = Subject()

        def handle_notify(_: BleakGATTCharacteristic, data: bytearray) -> None:
            logger.debug("RX %s: %s", characteristic, data.hex())
            subject.on_next(bytes(data))

        await self._client.start_notify(char, handle_notify)
        self._notifiers[key] = subject

        return subject
