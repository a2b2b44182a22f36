"""Normalization of copy/compare destination arguments.

Callers may name destinations as a single host, a sequence of hosts, or
a mapping of host to destination directory.  Everything downstream works
on one ordered list of :class:`CopyChainLink`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, TYPE_CHECKING

from fleetshell.errors import FleetshellError

if TYPE_CHECKING:
    from fleetshell.host import Host


class CopyChainError(FleetshellError):
    """Raised for invalid copy chain arguments or a failed transfer."""

    pass


@dataclass(frozen=True)
class CopyChainLink:
    """One destination of a copy chain: its host, directory, and position."""

    host: Host
    directory: str
    position: int


def with_trailing_slash(path: str) -> str:
    if path and not path.endswith("/"):
        return path + "/"
    return path


def normalize_files(files: str | Iterable[str] | None) -> list[str]:
    """Entries to copy/compare under the base directory; ``["."]`` means all of it."""
    if files is None:
        return ["."]
    if isinstance(files, str):
        return [files]
    files = list(files)
    return files or ["."]


def normalize_targets(base_dir: str, targets: Host | Iterable[Host] | Mapping[Host, str]) -> tuple[str, list[CopyChainLink]]:
    """Turn a *targets* argument into ``(base_dir, links)``.

    Directories gain a trailing slash.  Hosts without an override use
    *base_dir* as their destination directory.

    Raises:
        CopyChainError: if no targets are given or a host is repeated.
    """
    base_dir = with_trailing_slash(base_dir)
    if isinstance(targets, Mapping):
        pairs = [(host, with_trailing_slash(directory)) for host, directory in targets.items()]
    elif isinstance(targets, (str, bytes)):
        raise TypeError("targets must be Host objects, not %r" % (targets,))
    elif isinstance(targets, Iterable):
        pairs = [(host, base_dir) for host in targets]
    else:
        pairs = [(targets, base_dir)]

    if not pairs:
        raise CopyChainError("No target hosts supplied")

    seen = set()
    for host, _directory in pairs:
        if id(host) in seen:
            raise CopyChainError("Target host %s supplied more than once" % host)
        seen.add(id(host))

    links = [CopyChainLink(host=host, directory=directory, position=i)
             for i, (host, directory) in enumerate(pairs)]
    return base_dir, links
