"""
FalconCore Standard Library
Host built-ins reachable through the VM's CALL opcode
"""

import ipaddress
import logging
import secrets
import socket
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional

from ..config import FalconConfig
from ..errors import FalconRuntimeError

LOG = logging.getLogger("falcon.stdlib")

DEFAULT_BUILTIN_NAMES = ("time.now", "wait", "crypto.random", "network.scan")


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_integer(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def falcon_time_now() -> int:
    """Unix time in milliseconds"""
    return int(time.time() * 1000)


def falcon_wait(milliseconds: Any) -> int:
    """Block the calling VM for `milliseconds`"""
    if not is_number(milliseconds) or milliseconds < 0:
        raise FalconRuntimeError(f"wait expects a non-negative number of milliseconds, got {milliseconds!r}")
    time.sleep(milliseconds / 1000)
    return 0


def falcon_crypto_random(upper: Any = None) -> int:
    """Cryptographically strong random integer, in [0, upper) when a bound is given"""
    if upper is None:
        return secrets.randbits(63)
    if not is_integer(upper) or upper <= 0:
        raise FalconRuntimeError(f"crypto.random expects a positive integer bound, got {upper!r}")
    return secrets.randbelow(upper)


def host_responds(host: str, port: int, timeout: float) -> bool:
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def subnet_hosts(subnet: str) -> List[str]:
    """`192.168.1` -> ['192.168.1.1', ..., '192.168.1.254']"""
    parts = subnet.split('.')
    if len(parts) != 3:
        raise FalconRuntimeError(f"network.scan expects a subnet like '192.168.1', got {subnet!r}")
    try:
        ipaddress.IPv4Address(f"{subnet}.0")
    except ValueError:
        raise FalconRuntimeError(f"network.scan: invalid subnet {subnet!r}") from None
    return [f"{subnet}.{i}" for i in range(1, 255)]


def scan_subnet(subnet: str, port: int = 80, timeout: float = 0.05, workers: int = 32) -> List[str]:
    """TCP connect sweep over a /24; returns responding hosts in address order"""
    hosts = subnet_hosts(subnet)
    LOG.info("scanning %s.0/24 on port %d", subnet, port)
    with ThreadPoolExecutor(max_workers=workers) as executor:
        results = list(executor.map(lambda host: host_responds(host, port, timeout), hosts))
    found = [host for host, alive in zip(hosts, results) if alive]
    LOG.info("scan of %s.0/24 found %d host(s)", subnet, len(found))
    return found


def make_network_scan(config: FalconConfig) -> Callable[[Any], str]:
    def falcon_network_scan(subnet: Any) -> str:
        if not config.allow_network:
            raise FalconRuntimeError("network.scan is disabled (set allow_network to enable it)")
        if not isinstance(subnet, str):
            raise FalconRuntimeError(f"network.scan expects a subnet string, got {subnet!r}")
        found = scan_subnet(subnet, config.scan_port, config.scan_timeout, config.scan_workers)
        return ",".join(found)
    return falcon_network_scan


@dataclass(frozen=True)
class Builtin:
    name: str
    function: Callable[..., Any]
    min_args: int
    max_args: int


class BuiltinRegistry:
    """Name -> host callable, with the arity each accepts"""

    def __init__(self):
        self._builtins: Dict[str, Builtin] = {}

    def register(self, name: str, function: Callable[..., Any], min_args: int = 0,
                 max_args: Optional[int] = None):
        self._builtins[name] = Builtin(name, function, min_args,
                                       min_args if max_args is None else max_args)

    def __contains__(self, name: object) -> bool:
        return name in self._builtins

    def __iter__(self) -> Iterator[str]:
        return iter(self._builtins)

    def names(self) -> List[str]:
        return list(self._builtins)

    def call(self, name: str, arguments: List[Any]) -> Any:
        builtin = self._builtins.get(name)
        if builtin is None:
            raise FalconRuntimeError(f"Undefined built-in '{name}'")
        if not builtin.min_args <= len(arguments) <= builtin.max_args:
            if builtin.min_args == builtin.max_args:
                expected = str(builtin.min_args)
            else:
                expected = f"{builtin.min_args} to {builtin.max_args}"
            raise FalconRuntimeError(
                f"Built-in '{name}' expects {expected} argument(s), got {len(arguments)}")
        result = builtin.function(*arguments)
        return 0 if result is None else result


def get_builtin_functions(config: Optional[FalconConfig] = None) -> BuiltinRegistry:
    """Registry with the default host built-ins"""
    config = config or FalconConfig()
    registry = BuiltinRegistry()
    registry.register("time.now", falcon_time_now)
    registry.register("wait", falcon_wait, 1)
    registry.register("crypto.random", falcon_crypto_random, 0, 1)
    registry.register("network.scan", make_network_scan(config), 1)
    return registry
