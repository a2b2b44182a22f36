"""Reusable orchestration primitives for fleetshell.

Small building blocks shared by the host handle, the copy chain and the
CLI: bounded waits on a worker thread and fan-out of one command to many
hosts.
"""

from __future__ import annotations

import fcntl
import logging
import socket
import struct
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError, as_completed
from typing import Callable, TYPE_CHECKING

from fleetshell.errors import FleetshellError
from fleetshell.orchestration.ssh import RemoteCommandError, RemoteResult

if TYPE_CHECKING:
    from fleetshell.host import Host

logger = logging.getLogger(__name__)

SIOCGIFADDR = 0x8915


def run_with_deadline(func: Callable[[], object], timeout: float) -> bool:
    """Run *func* on a worker thread and wait at most *timeout* seconds.

    Returns True if it finished in time, False if it did not or if it
    raised :class:`RemoteCommandError` (a remote wait loop that gave up).
    Any other exception propagates.  A call that overruns keeps running
    in the background; remote wait loops are bounded so it ends on its own.
    """
    pool = ThreadPoolExecutor(max_workers=1)
    future = pool.submit(func)
    pool.shutdown(wait=False)
    try:
        future.result(timeout=timeout)
    except FuturesTimeoutError:
        return False
    except RemoteCommandError as e:
        logger.debug("Wait gave up: %s", e)
        return False
    return True


def execute_parallel(
        hosts: list[Host],
        command: str,
        attempts: int | None = None,
        check: bool = True,
) -> list[RemoteResult]:
    """Execute the same command on multiple hosts in parallel using threads.

    Failures are folded into the returned results instead of raised, so
    one unreachable machine does not hide the output of the others.

    Returns:
        List of RemoteResult, one per host (order not guaranteed).
    """
    if not hosts:
        return []

    logger.info("  Running command in parallel on %d hosts: %s",
                len(hosts), ", ".join(str(h) for h in hosts))

    def _one(host: Host) -> RemoteResult:
        try:
            output = host.execute(command, attempts=attempts, check=check)
        except RemoteCommandError as e:
            return e.result
        except FleetshellError as e:
            return RemoteResult(host=host.address, returncode=-1, stdout="",
                                stderr=str(e), command=command)
        return RemoteResult(host=host.address, returncode=0, stdout=output, command=command)

    t0 = time.monotonic()
    results: list[RemoteResult] = []
    with ThreadPoolExecutor(max_workers=len(hosts)) as executor:
        futures = {executor.submit(_one, host): host for host in hosts}
        for future in as_completed(futures):
            results.append(future.result())

    elapsed = time.monotonic() - t0
    ok = sum(1 for r in results if r.success)
    logger.info("  Parallel execution done: %d/%d OK (%.1fs total)",
                ok, len(results), elapsed)
    return results


def interface_ipv4(interface: str) -> str:
    """Return the IPv4 address bound to local network *interface* (Linux only).

    Raises:
        FleetshellError: if the interface does not exist or has no IPv4 address.
    """
    request = struct.pack("256s", interface[:15].encode())
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        try:
            reply = fcntl.ioctl(sock.fileno(), SIOCGIFADDR, request)
        except OSError as e:
            raise FleetshellError("No IPv4 address on interface %s: %s" % (interface, e)) from e
    return socket.inet_ntoa(reply[20:24])
