#!/usr/bin/env python3

# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

from __future__ import annotations

import sys
import argparse
import json
import asyncio
import logging
from signal import SIGINT, SIGTERM

from wiz_lights.internal_types import *

from wiz_lights import (
    __version__ as pkg_version,
    WizLight,
    WizDiscovery,
    WizPushListener,
    WizPushEvent,
    WizRetryPolicy,
    WizMessageHistory,
    WIZ_COMMAND_PORT,
    WIZ_PUSH_PORT,
    WIZ_BROADCAST_ADDRESS,
    DEFAULT_DISCOVERY_WINDOW,
  )
from wiz_lights.constants import DEFAULT_ATTEMPT_TIMEOUT

class CmdExitError(RuntimeError):
    exit_code: int

    def __init__(self, exit_code: int, msg: Optional[str]=None):
        if msg is None:
            msg = f"Command exited with return code {exit_code}"
        super().__init__(msg)
        self.exit_code = exit_code

class ArgparseExitError(CmdExitError):
    pass

class NoExitArgumentParser(argparse.ArgumentParser):
    def exit(self, status=0, message=None):
        if message:
            self._print_message(message, sys.stderr)
        raise ArgparseExitError(status, message)

def _parse_pilot_value(value: str) -> Jsonable:
    """Interprets a "-p name=value" value as JSON where possible ("true", "50", "[1,2]"), and as a
       plain string otherwise."""
    try:
        result: Jsonable = json.loads(value)
    except json.JSONDecodeError:
        result = value
    return result

class CommandHandler:
    _argv: Optional[Sequence[str]]
    _parser: argparse.ArgumentParser
    _args: argparse.Namespace
    _provide_traceback: bool = True

    def __init__(self, argv: Optional[Sequence[str]]=None):
        self._argv = argv

    def _print_json(self, value: Jsonable) -> None:
        print(json.dumps(value, indent=2, sort_keys=True))
        sys.stdout.flush()

    def _get_light(self) -> WizLight:
        ip: Optional[str] = self._args.ip
        if ip is None:
            raise CmdExitError(1, "--ip is required for this command")
        retry_policy = WizRetryPolicy(attempt_timeout=self._args.timeout)
        return WizLight(ip, port=self._args.port, retry_policy=retry_policy)

    def _parse_pilot_params(self, assignments: List[str]) -> JsonableDict:
        params: JsonableDict = {}
        for assignment in assignments:
            if not '=' in assignment:
                raise CmdExitError(1, f"Pilot parameter must be <name>=<value>: {assignment!r}")
            name, value = assignment.split('=', 1)
            params[name] = _parse_pilot_value(value)
        return params

    async def cmd_bare(self) -> int:
        print("A command is required", file=sys.stderr)
        return 1

    async def cmd_discover(self) -> int:
        discovery = WizDiscovery(
            window=self._args.wait_time,
            broadcast_address=self._args.broadcast_address,
            port=self._args.port,
            bind_address=self._args.bind_address,
          )
        async for device in discovery.iter_discover():
            summary: JsonableDict = {
                "ip": device.ip,
                "mac": device.mac,
                "result": device.response,
                "monotonic_time": device.monotonic_time,
                "utc_time": device.utc_time.isoformat(),
            }
            self._print_json(summary)
        return 0

    async def cmd_status(self) -> int:
        status = await self._get_light().get_status()
        self._print_json(status.to_jsonable())
        return 0

    async def cmd_on(self) -> int:
        response = await self._get_light().turn_on()
        self._print_json(response.message)
        return 0

    async def cmd_off(self) -> int:
        response = await self._get_light().turn_off()
        self._print_json(response.message)
        return 0

    async def cmd_toggle(self) -> int:
        response = await self._get_light().toggle()
        self._print_json(response.message)
        return 0

    async def cmd_set(self) -> int:
        params = self._parse_pilot_params(self._args.params)
        if len(params) == 0:
            raise CmdExitError(1, "At least one -p <name>=<value> is required")
        response = await self._get_light().set_pilot(params)
        self._print_json(response.message)
        return 0

    async def cmd_reset(self) -> int:
        await self._get_light().reset()
        return 0

    async def cmd_reboot(self) -> int:
        await self._get_light().reboot()
        return 0

    async def cmd_power(self) -> int:
        power = await self._get_light().get_power()
        self._print_json({ "power": power })
        return 0

    async def cmd_config(self) -> int:
        light = self._get_light()
        section: str = self._args.section
        config: JsonableDict
        if section == "system":
            config = await light.get_system_config()
        elif section == "user":
            config = await light.get_user_config()
        else:
            config = await light.get_model_config()
        self._print_json(config)
        return 0

    async def cmd_diagnostics(self) -> int:
        self._print_json(await self._get_light().diagnostics())
        return 0

    async def cmd_listen(self) -> int:
        def push_handler(event: WizPushEvent) -> None:
            summary: JsonableDict = {
                "method": event.method,
                "params": event.params,
                "src_addr": f"{event.src_addr[0]}:{event.src_addr[1]}",
                "monotonic_time": event.monotonic_time,
                "utc_time": event.utc_time.isoformat(),
            }
            self._print_json(summary)

        register_ips: List[str] = self._args.register_ips
        listener = WizPushListener(
            port=self._args.push_port,
            bind_address=self._args.bind_address,
            history=WizMessageHistory(),
          )
        listener.register(push_handler)
        loop = asyncio.get_running_loop()
        done = asyncio.Event()
        if not self._provide_traceback:
            for signal in (SIGINT, SIGTERM):
                loop.add_signal_handler(signal, done.set)
        try:
            async with listener:
                for ip in register_ips:
                    await listener.register_device(ip, phone_ip=self._args.phone_ip, port=self._args.port)
                await done.wait()
        finally:
            if not self._provide_traceback:
                for signal in (SIGINT, SIGTERM):
                    loop.remove_signal_handler(signal)
        return 0

    async def cmd_version(self) -> int:
        print(pkg_version)
        return 0

    async def arun(self) -> int:
        """Run the wiz-lights command-line tool with provided arguments

        Args:
            argv (Optional[Sequence[str]], optional):
                A list of commandline arguments (NOT including the program as argv[0]!),
                or None to use sys.argv[1:]. Defaults to None.

        Returns:
            int: The exit code that would be returned if this were run as a standalone command.
        """
        parser = NoExitArgumentParser(prog="wiz-lights", description="Discover and control WiZ lights on the local network.")


        # ======================= Main command

        self._parser = parser
        parser.add_argument('--traceback', "--tb", action='store_true', default=False,
                            help='Display detailed exception information')
        parser.add_argument('--log-level', dest='log_level', default='warning',
                            choices=['debug', 'info', 'warning', 'error', 'critical'],
                            help='''The logging level to use. Default: warning''')
        parser.set_defaults(func=self.cmd_bare)

        subparsers = parser.add_subparsers(
                            title='Commands',
                            description='Valid commands',
                            help='Additional help available with "<command-name> -h"')

        def add_device_parser(name: str, description: str) -> argparse.ArgumentParser:
            device_parser = subparsers.add_parser(name, description=description)
            device_parser.add_argument('--ip', default=None,
                                help='''The IP address of the light. Required.''')
            device_parser.add_argument('--port', type=int, default=WIZ_COMMAND_PORT,
                                help=f'''The command port of the light. Default: {WIZ_COMMAND_PORT}''')
            device_parser.add_argument('--timeout', type=float, default=DEFAULT_ATTEMPT_TIMEOUT,
                                help=f'''The time to wait for each reply attempt, in seconds. Default: {DEFAULT_ATTEMPT_TIMEOUT}''')
            return device_parser

        # ======================= discover

        parser_discover = subparsers.add_parser('discover', description="Broadcast a discovery request and list the lights that answer")
        parser_discover.add_argument('--wait-time', dest='wait_time', type=float, default=DEFAULT_DISCOVERY_WINDOW,
                            help=f'''The amount of time to wait for responses, in seconds. Default: {DEFAULT_DISCOVERY_WINDOW}''')
        parser_discover.add_argument('--broadcast-address', dest='broadcast_address', default=WIZ_BROADCAST_ADDRESS,
                            help=f'''The address to broadcast to. Default: {WIZ_BROADCAST_ADDRESS}''')
        parser_discover.add_argument('--port', type=int, default=WIZ_COMMAND_PORT,
                            help=f'''The command port to broadcast to. Default: {WIZ_COMMAND_PORT}''')
        parser_discover.add_argument('-b', '--bind', dest='bind_address', default='0.0.0.0',
                            help='''The local IP address to bind to. Default: all interfaces''')
        parser_discover.set_defaults(func=self.cmd_discover)

        # ======================= device commands

        add_device_parser('status', "Display the current state of a light").set_defaults(func=self.cmd_status)
        add_device_parser('on', "Turn a light on").set_defaults(func=self.cmd_on)
        add_device_parser('off', "Turn a light off").set_defaults(func=self.cmd_off)
        add_device_parser('toggle', "Turn a light on if it is off, or off if it is on").set_defaults(func=self.cmd_toggle)
        add_device_parser('reset', "Reset a light to factory settings").set_defaults(func=self.cmd_reset)
        add_device_parser('reboot', "Reboot a light").set_defaults(func=self.cmd_reboot)
        add_device_parser('power', "Display the power draw of a light, in watts").set_defaults(func=self.cmd_power)
        add_device_parser('diagnostics', "Display everything a light reports about itself").set_defaults(func=self.cmd_diagnostics)

        parser_set = add_device_parser('set', "Set pilot parameters of a light")
        parser_set.add_argument('-p', '--param', dest='params', action='append', default=[],
                            help='''A <name>=<value> pilot parameter, e.g. "dimming=50" or "state=true". May be repeated.''')
        parser_set.set_defaults(func=self.cmd_set)

        parser_config = add_device_parser('config', "Display a configuration section of a light")
        parser_config.add_argument('section', choices=['system', 'user', 'model'],
                            help='''The configuration section to display''')
        parser_config.set_defaults(func=self.cmd_config)

        # ======================= listen

        parser_listen = subparsers.add_parser('listen', description="Listen for pushed state updates from lights")
        parser_listen.add_argument('--push-port', dest='push_port', type=int, default=WIZ_PUSH_PORT,
                            help=f'''The local port to listen on. Default: {WIZ_PUSH_PORT}''')
        parser_listen.add_argument('-b', '--bind', dest='bind_address', default='0.0.0.0',
                            help='''The local IP address to bind to. Default: all interfaces''')
        parser_listen.add_argument('-r', '--register', dest='register_ips', action='append', default=[],
                            help='''The IP address of a light to ask for push updates. May be repeated.''')
        parser_listen.add_argument('--phone-ip', dest='phone_ip', default=None,
                            help='''The local IP address lights should push to. Default: the preferred local address''')
        parser_listen.add_argument('--port', type=int, default=WIZ_COMMAND_PORT,
                            help=f'''The command port of registered lights. Default: {WIZ_COMMAND_PORT}''')
        parser_listen.set_defaults(func=self.cmd_listen)

        # ======================= version

        parser_version = subparsers.add_parser('version',
                                description='''Display version information.''')
        parser_version.set_defaults(func=self.cmd_version)

        # =========================================================

        try:
            args = parser.parse_args(self._argv)
        except ArgparseExitError as ex:
            return ex.exit_code
        traceback: bool = args.traceback
        self._provide_traceback = traceback

        try:
            logging.basicConfig(
                level=logging.getLevelName(args.log_level.upper()),
            )
            self._args = args
            func: Callable[[], Awaitable[int]] = args.func
            logging.debug(f"Running command {func.__name__}, tb = {traceback}")
            rc = await func()
            logging.debug(f"Command {func.__name__} returned {rc}")
        except Exception as ex:
            if isinstance(ex, CmdExitError):
                rc = ex.exit_code
            else:
                rc = 1
            if rc != 0:
                if traceback:
                    raise
            print(f"wiz-lights: error: {ex}", file=sys.stderr)
        except BaseException as ex:
            print(f"wiz-lights: Unhandled exception: {ex}", file=sys.stderr)
            raise

        return rc

    def run(self) -> int:
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            rc = loop.run_until_complete(self.arun())
        finally:
            loop.close()
        return rc

def run(argv: Optional[Sequence[str]]=None) -> int:
    try:
        rc = CommandHandler(argv).run()
    except CmdExitError as ex:
        rc = ex.exit_code
    return rc

async def arun(argv: Optional[Sequence[str]]=None) -> int:
    try:
        rc = await CommandHandler(argv).arun()
    except CmdExitError as ex:
        rc = ex.exit_code
    return rc

# allow running with "python3 -m", or as a standalone script
if __name__ == "__main__":
    sys.exit(run())
