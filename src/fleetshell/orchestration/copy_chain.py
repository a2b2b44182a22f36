"""Chained directory copies from one host to many.

Copying a tree to N hosts by repeating a source -> target transfer N times
saturates the source's uplink.  Instead the destinations form a relay
chain: the source streams a compressed tar once to the first destination,
and every destination except the last tees the stream through a FIFO to
a netcat forwarding it to the next one while extracting locally.

Listeners are started tail first and each must be confirmed ready before
the one upstream of it is started; the source only begins sending once
the whole chain is listening.  A copy counts as successful only after the
destination trees are verified against the source.
"""

from __future__ import annotations

import logging
import shlex
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Iterable, Mapping, TYPE_CHECKING

from fleetshell.errors import FleetshellError
from fleetshell.orchestration.listing import compare_trees, list_directory
from fleetshell.orchestration.ssh import RemoteCommandError, Session, command_succeeded
from fleetshell.orchestration.targets import (
    CopyChainError,
    CopyChainLink,
    normalize_files,
    normalize_targets,
)
from fleetshell.scripts import read_script

if TYPE_CHECKING:
    from fleetshell.host import Host

logger = logging.getLogger(__name__)


class UnsafeDestinationError(CopyChainError):
    """Raised for destination directories too dangerous to write into."""

    pass


class DestinationNotEmptyError(CopyChainError):
    """Raised when a destination already holds data and overwrite is off."""

    def __init__(self, host: Host, name: str, size: int):
        self.host = host
        self.name = name
        self.size = size
        super().__init__(
            "File %s exists on destination %s and has nonzero size (%d bytes)" % (name, host, size)
        )


def validate_destination(link: CopyChainLink) -> None:
    """Reject destination directories that indicate a configuration error.

    Raises:
        UnsafeDestinationError: for ``..``, ``./``, ``/`` or an empty path.
    """
    directory = link.directory
    if ".." in directory or "./" in directory or directory in ("/", ""):
        raise UnsafeDestinationError("Directory %s:%s looks suspicious" % (link.host, directory))


def fifo_name(port: int) -> str:
    return "fifo%d" % port


def _ensure_empty(link: CopyChainLink, files: list[str]) -> None:
    """Fail if any requested entry already has a nonzero size on *link*.

    Only looks at the top level; subdirectories are not scanned.
    """
    listing = list_directory(link.host, [link.directory + f for f in files])
    for name, size in listing.items():
        if isinstance(size, int) and size > 0:
            raise DestinationNotEmptyError(link.host, name, size)


def _render(name: str, **kwargs) -> str:
    return read_script(name).format(**kwargs).strip()


def _run_worker(host: Host, session: Session, script: str) -> str:
    """Run one long-lived conduit command on a session borrowed up front."""
    logger.debug("  SSH cmd -> %s: %s", host, script[:80])
    result = session.run(script)
    if not command_succeeded(result):
        session.close()
        raise RemoteCommandError(result)
    host.release_session(session)
    return result.stdout


def _start_worker(pool: ThreadPoolExecutor, workers: dict[Future, Session], host: Host, script: str) -> None:
    session = host.borrow_session()
    workers[pool.submit(_run_worker, host, session, script)] = session


def _abort_chain(links: list[CopyChainLink], port: int, workers: dict[Future, Session]) -> None:
    """Best-effort teardown of a partly built or failed chain.

    Runs the cleanup script on every link, then closes the sessions of
    workers that are still running so their threads can finish.
    """
    for link in links:
        script = _render("chain_cleanup.sh", port=port,
                         fifo_path=shlex.quote(link.directory + fifo_name(port)))
        try:
            link.host.execute(script, attempts=1, check=False)
        except FleetshellError as e:
            logger.warning("Cleanup of copy chain on %s failed: %s", link.host, e)
    for worker, session in workers.items():
        if not worker.done():
            session.close()


def fast_copy_chain(
        source: Host,
        base_dir: str,
        targets: Host | Iterable[Host] | Mapping[Host, str],
        files: str | Iterable[str] | None = None,
        port: int | None = None,
        overwrite: bool = False,
        ready_timeout: float | None = None,
) -> bool:
    """Recursively copy a directory from *source* to one or more hosts.

    Requires the configured compressor (pigz by default), tar and nc on
    the source and every target.

    Args:
        source: Host to copy from.
        base_dir: Directory to copy from on the source; also the default
            destination directory on the targets.
        targets: A Host, a sequence of Hosts (chain order), or a mapping
            of Host to destination directory override.
        files: Only copy these entries of *base_dir* instead of all of it.
        port: netcat port (default from config, normally 7000).
        overwrite: Don't fail if the requested entries already exist with
            a nonzero size on a destination.
        ready_timeout: Seconds to wait for each listener and relay FIFO.

    Returns:
        True once every destination has been verified.

    Raises:
        UnsafeDestinationError, DestinationNotEmptyError: pre-flight; nothing
            was started.
        ReadinessTimeoutError: a listener or FIFO never came up; the chain
            was torn down and nothing was sent.
        FleetshellError: any other failure while building the chain or
            sending; the chain was torn down.
        ListingMismatchError: the transfer finished but a destination
            differs from the source.
    """
    config = source.config
    base_dir, links = normalize_targets(base_dir, targets)
    file_list = normalize_files(files)
    for link in links:
        validate_destination(link)

    port = int(port or config.copy_port)
    timeout = config.ready_timeout if ready_timeout is None else ready_timeout
    compressor = config.compressor
    fifo = fifo_name(port)

    # Pre-flight on every participant before any listener starts.
    source.confirm_installed(compressor)
    for link in links:
        link.host.confirm_installed(compressor)
        link.host.execute("mkdir -p %s" % shlex.quote(link.directory))
        if not overwrite:
            _ensure_empty(link, file_list)

    # Tail first: each link must be listening before the one upstream
    # of it starts forwarding into it.
    pool = ThreadPoolExecutor(max_workers=2 * len(links))
    workers: dict[Future, Session] = {}
    started: list[CopyChainLink] = []
    try:
        for link in reversed(links):
            host = link.host
            directory = shlex.quote(link.directory)
            started.append(link)
            if link.position == len(links) - 1:
                script = _render("chain_tail.sh", directory=directory, port=port, compressor=compressor)
                _start_worker(pool, workers, host, script)
                host.confirm_listening_on_port(port, timeout)
                host.output("Listening with netcat.")
            else:
                next_host = links[link.position + 1].host
                forward = _render("chain_relay_forward.sh", directory=directory, fifo=fifo,
                                  next_host=next_host.address, port=port)
                _start_worker(pool, workers, host, forward)
                host.confirm_fifo_exists(link.directory + fifo, timeout)
                listen = _render("chain_relay_listen.sh", directory=directory, port=port,
                                 fifo=fifo, compressor=compressor)
                _start_worker(pool, workers, host, listen)
                host.confirm_listening_on_port(port, timeout)
                host.output("Listening with netcat, and chaining to %s." % next_host)

        file_args = " ".join(shlex.quote(f) for f in file_list)
        source.output("Sending files over to %s: %s" % (links[0].host, " ".join(file_list)))
        send = _render("chain_send.sh", directory=shlex.quote(base_dir), files=file_args,
                       compressor=compressor, head_host=links[0].host.address, port=port)
        source.execute_once(send)

        for worker in workers:
            worker.result()
    except Exception:
        _abort_chain(started, port, workers)
        raise
    finally:
        pool.shutdown(wait=False)
    source.output("File copy complete.")

    source.output("Verifying file sizes and types on all destinations.")
    compare_trees(source, base_dir, {link.host: link.directory for link in links}, files=file_list)
    source.output("Verification successful.")
    return True
