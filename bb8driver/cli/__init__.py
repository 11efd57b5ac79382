# SPDX-License-Identifier: MIT
# Copyright (c) 2024 The bb8driver Authors

"""Command line wrapper around bb8driver library."""

import argparse
import asyncio
import logging
import sys
from abc import ABC, abstractmethod
from os import path
from typing import Any, Optional

import argcomplete

from bb8driver import __name__ as MODULE_NAME
from bb8driver import __version__ as MODULE_VERSION

PROG_NAME = (
    f"{path.basename(sys.executable)} -m {MODULE_NAME}"
    if sys.argv[0].endswith("__main__.py")
    else path.basename(sys.argv[0])
)


class Tool(ABC):
    """Common base class for tool implementations."""

    @abstractmethod
    def add_parser(self, subparsers: argparse._SubParsersAction):
        """
        Overriding methods must at least do the following::

            parser = subparsers.add_parser('tool', ...)
            parser.tool = self

        Then additional arguments can be added using the ``parser`` object.
        """
        pass

    @abstractmethod
    async def run(self, args: argparse.Namespace):
        """
        Overriding methods should provide an implementation to run the tool.
        """
        pass


def _raise_on_error(error: Optional[Exception], data: Any = None) -> None:
    if error is not None:
        raise error


def parse_color(value: str) -> int:
    """
    Parses a color given as six hex digits, optionally prefixed with ``#`` or
    ``0x``.
    """
    digits = value.lower()

    if digits.startswith("#"):
        digits = digits[1:]
    elif digits.startswith("0x"):
        digits = digits[2:]

    if len(digits) != 6:
        raise argparse.ArgumentTypeError(f"expecting RRGGBB but got '{value}'")

    try:
        return int(digits, 16)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expecting RRGGBB but got '{value}'")


class RobotTool(Tool):
    """
    Base class for tools that connect to a robot, enable developer mode and
    then send commands.
    """

    def _add_parser(
        self, subparsers: argparse._SubParsersAction, name: str, help: str
    ) -> argparse.ArgumentParser:
        parser = subparsers.add_parser(name, help=help)
        parser.tool = self
        parser.add_argument(
            "address",
            metavar="<address>",
            help="Bluetooth address of the robot (a UUID on Apple platforms)",
        )
        return parser

    @abstractmethod
    async def drive(self, driver, args: argparse.Namespace):
        """
        Overriding methods send commands using ``driver``, a connected
        :class:`bb8driver.driver.BB8Driver` in developer mode.
        """
        pass

    async def run(self, args: argparse.Namespace):
        from bb8driver.connections.bb8 import BB8Connection
        from bb8driver.driver import BB8Driver

        connection = BB8Connection(args.address)

        await connection.connect()
        try:
            driver = BB8Driver(connection)
            await driver.dev_mode_on(_raise_on_error)
            await self.drive(driver, args)
        finally:
            await connection.disconnect()


class DevMode(RobotTool):
    def add_parser(self, subparsers: argparse._SubParsersAction):
        self._add_parser(subparsers, "devmode", "wake the robot into developer mode")

    async def drive(self, driver, args: argparse.Namespace):
        print("Developer mode enabled.")


class RGB(RobotTool):
    def add_parser(self, subparsers: argparse._SubParsersAction):
        parser = self._add_parser(subparsers, "rgb", "set the color of the main LED")
        parser.add_argument(
            "color",
            metavar="<color>",
            help="the color as RRGGBB hex digits, e.g. ff0000 for red",
            type=parse_color,
        )
        parser.add_argument(
            "--persist",
            action="store_true",
            help="keep the color after the robot is power cycled",
        )

    async def drive(self, driver, args: argparse.Namespace):
        await driver.set_rgb(args.color, args.persist, _raise_on_error)


class Roll(RobotTool):
    def add_parser(self, subparsers: argparse._SubParsersAction):
        parser = self._add_parser(subparsers, "roll", "roll at a speed and heading")
        parser.add_argument(
            "speed",
            metavar="<speed>",
            help="speed from 0 to 255",
            type=int,
        )
        parser.add_argument(
            "heading",
            metavar="<heading>",
            help="heading in degrees from 0 to 359",
            type=int,
        )
        parser.add_argument(
            "--state",
            help="the roll state: %(choices)s (default: %(default)s)",
            choices=["stop", "go", "calibrate"],
            default="go",
        )
        parser.add_argument(
            "--duration",
            metavar="<seconds>",
            help="stop after rolling for this many seconds",
            type=float,
        )

    async def drive(self, driver, args: argparse.Namespace):
        from bb8driver.ble.sphero.bytecodes import RollState

        state = RollState[args.state.upper()]
        await driver.roll(args.speed, args.heading, state, _raise_on_error)

        if args.duration is not None:
            await asyncio.sleep(args.duration)
            await driver.stop(_raise_on_error)


class Stop(RobotTool):
    def add_parser(self, subparsers: argparse._SubParsersAction):
        self._add_parser(subparsers, "stop", "stop rolling")

    async def drive(self, driver, args: argparse.Namespace):
        await driver.stop(_raise_on_error)


class Stabilization(RobotTool):
    def add_parser(self, subparsers: argparse._SubParsersAction):
        parser = self._add_parser(
            subparsers, "stabilization", "turn auto-stabilization on or off"
        )
        parser.add_argument(
            "mode",
            metavar="<mode>",
            help="%(choices)s",
            choices=["on", "off"],
        )

    async def drive(self, driver, args: argparse.Namespace):
        await driver.set_stabilization(args.mode == "on", _raise_on_error)


class Info(RobotTool):
    def add_parser(self, subparsers: argparse._SubParsersAction):
        self._add_parser(subparsers, "info", "print information about the robot")

    async def drive(self, driver, args: argparse.Namespace):
        await driver.enable_notifications(_raise_on_error)

        mode = await driver.get_device_mode(_raise_on_error)
        print(f"device mode: {mode.name}")

        color = await driver.get_rgb(_raise_on_error)
        print(f"color: #{color:06x}")

        chassis_id = await driver.get_chassis_id(_raise_on_error)
        print(f"chassis id: {chassis_id}")

        power = await driver.get_power_state(_raise_on_error)
        print(f"battery: {power.state.name} {power.voltage:.2f} V")
        print(f"charges: {power.charges}")
        print(f"seconds since charge: {power.seconds_since_charge}")


def main():
    """Runs ``bb8driver`` command line interface."""

    # Provide main description and help.
    parser = argparse.ArgumentParser(
        prog=PROG_NAME,
        description="Utilities for driving Sphero BB-8 robots.",
        epilog="Run `%(prog)s <tool> --help` for tool-specific arguments.",
    )

    parser.add_argument(
        "-v", "--version", action="version", version=f"{MODULE_NAME} v{MODULE_VERSION}"
    )
    parser.add_argument(
        "-d", "--debug", action="store_true", help="enable debug logging"
    )

    subparsers = parser.add_subparsers(
        metavar="<tool>",
        dest="tool",
        help="the tool to use",
    )

    for tool in DevMode(), RGB(), Roll(), Stop(), Stabilization(), Info():
        tool.add_parser(subparsers)

    argcomplete.autocomplete(parser)
    args = parser.parse_args()

    logging.basicConfig(
        format="%(asctime)s: %(levelname)s: %(name)s: %(message)s",
        level=logging.DEBUG if args.debug else logging.WARNING,
    )

    if not args.tool:
        parser.error(f'Missing name of tool: {"|".join(subparsers.choices.keys())}')

    asyncio.run(subparsers.choices[args.tool].tool.run(args))
