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

from upnp_igd.internal_types import *

from upnp_igd import (
    __version__ as pkg_version,
    SearchConfig,
    GatewayLocation,
    PortMappingProtocol,
    search_gateway,
  )
from upnp_igd.gateway import GatewayBase
from upnp_igd.transport import AsyncTransport
from upnp_igd.aio import AiohttpTransport, HttpxTransport, search_gateway as async_search_gateway
from upnp_igd.util import get_preferred_local_ip, get_default_ip_gateway, parse_host_and_port

BACKENDS = [ 'blocking', 'aiohttp', 'httpx' ]

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

def _protocol_arg(value: str) -> PortMappingProtocol:
    try:
        return PortMappingProtocol(value.upper())
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid protocol {value!r} (expected tcp or udp)") from None

def _local_addr_arg(value: str) -> HostAndPort:
    try:
        return parse_host_and_port(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid local address {value!r}: {e}") from None

class CommandHandler:
    _argv: Optional[Sequence[str]]
    _parser: argparse.ArgumentParser
    _args: argparse.Namespace
    _provide_traceback: bool = True

    def __init__(self, argv: Optional[Sequence[str]]=None):
        self._argv = argv

    async def cmd_bare(self) -> int:
        print("A command is required", file=sys.stderr)
        return 1

    def _get_search_config(self) -> SearchConfig:
        config_file: Optional[str] = self._args.config_file
        if config_file is None:
            config = SearchConfig()
        else:
            with open(config_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise CmdExitError(1, f"Configuration file {config_file} does not contain a JSON object")
            config = SearchConfig.from_jsonable(data)
        bind: Optional[str] = self._args.bind
        if bind is not None:
            if bind == 'default':
                local_ip = get_preferred_local_ip()
                if local_ip is None:
                    raise CmdExitError(1, "No local IP address to bind to")
                config = config.with_bind_addr((local_ip, 0))
            else:
                config = config.with_bind_addr(parse_host_and_port(bind))
        timeout: Optional[float] = self._args.timeout
        if timeout is not None:
            config = config.with_timeout(timeout)
        response_timeout: Optional[float] = self._args.response_timeout
        if response_timeout is not None:
            config = config.with_single_search_timeout(response_timeout)
        logging.debug(f"Search configuration: {config}")
        return config

    def _new_async_transport(self) -> AsyncTransport:
        if self._args.backend == 'aiohttp':
            return AiohttpTransport()
        return HttpxTransport()

    async def _call_gateway(self, method: Optional[str], *args: Any) -> Any:
        """Searches for a gateway with the selected backend and invokes one of its methods.

        With method=None, returns the resolved GatewayLocation."""
        config = self._get_search_config()
        request_timeout = config.timeout

        def call(gateway: GatewayBase) -> Any:
            if method is None:
                return gateway.location
            return getattr(gateway, method)(*args)

        if self._args.backend == 'blocking':
            def blocking_call() -> Any:
                with search_gateway(config, request_timeout=request_timeout) as gateway:
                    logging.debug(f"Found gateway {gateway}")
                    return call(gateway)
            return await asyncio.to_thread(blocking_call)

        transport = self._new_async_transport()
        try:
            gateway = await async_search_gateway(transport, config, request_timeout=request_timeout)
        except BaseException:
            await transport.close()
            raise
        async with gateway:
            logging.debug(f"Found gateway {gateway}")
            result = call(gateway)
            if method is not None:
                result = await result
            return result

    async def cmd_search(self) -> int:
        location: GatewayLocation = await self._call_gateway(None)
        gw_ip, gw_ifname = get_default_ip_gateway()
        summary: JsonableDict = location.to_jsonable()
        summary["default_route_gateway"] = gw_ip
        summary["default_route_interface"] = gw_ifname
        print(json.dumps(summary, indent=2, sort_keys=True))
        return 0

    async def cmd_external_ip(self) -> int:
        ip = await self._call_gateway('get_external_ip')
        print(ip)
        return 0

    async def cmd_add_port(self) -> int:
        await self._call_gateway(
            'add_port',
            self._args.protocol,
            self._args.external_port,
            self._args.local_addr,
            self._args.lease_duration,
            self._args.description,
          )
        return 0

    async def cmd_add_any_port(self) -> int:
        external_port: int = await self._call_gateway(
            'add_any_port',
            self._args.protocol,
            self._args.local_addr,
            self._args.lease_duration,
            self._args.description,
          )
        print(external_port)
        return 0

    async def cmd_remove_port(self) -> int:
        await self._call_gateway('remove_port', self._args.protocol, self._args.external_port)
        return 0

    async def cmd_list(self) -> int:
        entries = await self._call_gateway('list_port_mappings')
        print(json.dumps([entry.to_jsonable() for entry in entries], indent=2, sort_keys=True))
        return 0

    async def cmd_version(self) -> int:
        print(pkg_version)
        return 0

    async def arun(self) -> int:
        """Run the upnp-igd command-line tool with provided arguments

        Args:
            argv (Optional[Sequence[str]], optional):
                A list of commandline arguments (NOT including the program as argv[0]!),
                or None to use sys.argv[1:]. Defaults to None.

        Returns:
            int: The exit code that would be returned if this were run as a standalone command.
        """
        parser = NoExitArgumentParser(description="Discover a UPnP Internet Gateway Device and manage its port mappings.")


        # ======================= Main command

        self._parser = parser
        parser.add_argument('--traceback', "--tb", action='store_true', default=False,
                            help='Display detailed exception information')
        parser.add_argument('--log-level', dest='log_level', default='warning',
                            choices=['debug', 'info', 'warning', 'error', 'critical'],
                            help='''The logging level to use. Default: warning''')
        parser.add_argument('--backend', default='blocking', choices=BACKENDS,
                            help='''The I/O backend to use. Default: blocking''')
        parser.add_argument('--config', dest='config_file', default=None,
                            help='''A JSON file holding the search configuration. Command-line options override it.''')
        parser.add_argument('--timeout', type=float, default=None,
                            help='''The overall search timeout, in seconds. Also bounds each SOAP request. Default: 10''')
        parser.add_argument('--response-timeout', dest='response_timeout', type=float, default=None,
                            help='''The time to wait for any single search reply, in seconds. Default: 5''')
        parser.add_argument('-b', '--bind', default=None,
                            help='''The local <ip>[:<port>] to bind the search socket to, or "default" for the
                                    preferred address of the default gateway interface. Default: 0.0.0.0:0''')
        parser.set_defaults(func=self.cmd_bare)

        subparsers = parser.add_subparsers(
                            title='Commands',
                            description='Valid commands',
                            help='Additional help available with "<command-name> -h"')


        # ======================= search

        parser_search = subparsers.add_parser('search', description="Search for a gateway and display what was found")
        parser_search.set_defaults(func=self.cmd_search)

        # ======================= external-ip

        parser_external_ip = subparsers.add_parser('external-ip', description="Display the external IP address of the gateway")
        parser_external_ip.set_defaults(func=self.cmd_external_ip)

        # ======================= add-port

        parser_add_port = subparsers.add_parser('add-port', description="Map an external port on the gateway to a local address")
        parser_add_port.add_argument('protocol', type=_protocol_arg,
                            help='''The protocol to map: tcp or udp''')
        parser_add_port.add_argument('external_port', type=int,
                            help='''The external port to map''')
        parser_add_port.add_argument('local_addr', type=_local_addr_arg,
                            help='''The local <ip>:<port> to forward to''')
        parser_add_port.add_argument('--lease-duration', dest='lease_duration', type=int, default=0,
                            help='''The lease duration in seconds. Default: 0 (permanent)''')
        parser_add_port.add_argument('--description', default='upnp-igd',
                            help='''The description stored with the mapping. Default: "upnp-igd"''')
        parser_add_port.set_defaults(func=self.cmd_add_port)

        # ======================= add-any-port

        parser_add_any_port = subparsers.add_parser('add-any-port',
                            description="Map any free external port to a local address, and display the external port")
        parser_add_any_port.add_argument('protocol', type=_protocol_arg,
                            help='''The protocol to map: tcp or udp''')
        parser_add_any_port.add_argument('local_addr', type=_local_addr_arg,
                            help='''The local <ip>:<port> to forward to''')
        parser_add_any_port.add_argument('--lease-duration', dest='lease_duration', type=int, default=0,
                            help='''The lease duration in seconds. Default: 0 (permanent)''')
        parser_add_any_port.add_argument('--description', default='upnp-igd',
                            help='''The description stored with the mapping. Default: "upnp-igd"''')
        parser_add_any_port.set_defaults(func=self.cmd_add_any_port)

        # ======================= remove-port

        parser_remove_port = subparsers.add_parser('remove-port', description="Remove a port mapping from the gateway")
        parser_remove_port.add_argument('protocol', type=_protocol_arg,
                            help='''The protocol of the mapping: tcp or udp''')
        parser_remove_port.add_argument('external_port', type=int,
                            help='''The external port of the mapping''')
        parser_remove_port.set_defaults(func=self.cmd_remove_port)

        # ======================= list

        parser_list = subparsers.add_parser('list', description="List the port mappings of the gateway")
        parser_list.set_defaults(func=self.cmd_list)

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
            print(f"upnp-igd: error: {ex}", file=sys.stderr)
        except BaseException as ex:
            print(f"upnp-igd: Unhandled exception: {ex}", file=sys.stderr)
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
