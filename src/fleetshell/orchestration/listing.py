"""Remote directory listing, tree comparison and size computation.

Listings come from parsing ``ls`` output.  This is brittle, so the
parser is kept separate (:func:`parse_ls_output`) from the remote call
(:func:`list_directory`); swapping in a structured listing mechanism
only needs a new ``list_directory``.
"""

from __future__ import annotations

import logging
import posixpath
import re
import shlex
from collections import deque
from typing import Iterable, Mapping, Sequence, TYPE_CHECKING

from fleetshell.errors import FleetshellError
from fleetshell.orchestration.targets import normalize_files, normalize_targets

if TYPE_CHECKING:
    from fleetshell.host import Host

logger = logging.getLogger(__name__)

# Size value marking an entry as a subdirectory.
DIRECTORY = "/"
# Size reported for an entry absent on a destination.
MISSING = "MISSING"

DirectoryListing = dict[str, int | str]

# color off, one entry per line, all but . and .., no owner/group, type suffix
LS_COMMAND = "ls --color=never -1AgGF"

# perms, links, size, ..., time or year, name
_LS_LINE = re.compile(r"^[\w.+@-]+\s+\d+\s+(?P<size>\d+).*(?:\d\d:\d\d|\d{4})\s+(?P<name>.*)$")
_TYPE_SUFFIXES = "*/=>@|"


class ListingMismatchError(FleetshellError):
    """Raised when a destination tree does not match the source tree."""

    def __init__(self, source: Host, source_path: str, source_size,
                 target: Host, target_path: str, target_size):
        self.source_path = source_path
        self.target_path = target_path
        self.source_size = source_size
        self.target_size = target_size
        super().__init__(
            "Directory listing mismatch when comparing %s:%s to %s:%s (size: %s vs %s)"
            % (source, source_path, target, target_path, source_size, target_size)
        )


def parse_ls_output(output: str) -> DirectoryListing:
    """Parse ``ls --color=never -1AgGF`` output into a name -> size mapping.

    Lines that do not look like entries ("total", headers, errors) are
    skipped.  Names given as paths are reduced to their last component.
    """
    result: DirectoryListing = {}
    for line in output.splitlines():
        match = _LS_LINE.match(line)
        if not match:
            continue
        raw_name = match.group("name")
        if " -> " in raw_name:
            raw_name = raw_name.split(" -> ", 1)[0]
        is_dir = raw_name.endswith("/")
        name = raw_name[:-1] if raw_name and raw_name[-1] in _TYPE_SUFFIXES else raw_name
        name = name.rstrip("/").split("/")[-1]
        if not name:
            continue
        result[name] = DIRECTORY if is_dir else int(match.group("size"))
    return result


def list_directory(host: Host, path: str | Sequence[str]) -> DirectoryListing:
    """List *path* (a directory or single file, or several) on *host*.

    Missing paths are not an error; they simply contribute no entries.
    """
    paths = [path] if isinstance(path, str) else list(path)
    command = "%s %s" % (LS_COMMAND, " ".join(shlex.quote(p) for p in paths))
    return parse_ls_output(host.execute(command, check=False))


def _child(rel: str, name: str) -> str:
    return name if rel in (".", "") else "%s/%s" % (rel, name)


def _names_file(rel: str, listing: DirectoryListing) -> bool:
    name = posixpath.basename(rel.rstrip("/"))
    return list(listing) == [name] and listing[name] != DIRECTORY


def compare_trees(
        source: Host,
        base_dir: str,
        targets: Host | Iterable[Host] | Mapping[Host, str],
        files: str | Iterable[str] | None = None,
) -> bool:
    """Compare file existence and size between *source* and every target.

    Walks the source tree breadth first, starting at *files* under
    *base_dir* (default: all of it).  Every source entry must exist with
    the same size on each target; extra target entries are ignored.

    Returns:
        True when everything matches.

    Raises:
        ListingMismatchError: on the first missing or differently sized entry.
    """
    base_dir, links = normalize_targets(base_dir, targets)
    roots = normalize_files(files)
    queue = deque(roots)
    while queue:
        rel = queue.popleft()
        source_listing = list_directory(source, base_dir + rel)
        # ls on a file lists just that file; report it under its own path
        parent = rel
        if rel in roots and rel != "." and _names_file(rel, source_listing):
            parent = posixpath.dirname(rel.rstrip("/"))
        for link in links:
            target_listing = list_directory(link.host, link.directory + rel)
            for name, size in source_listing.items():
                target_size = target_listing.get(name, MISSING)
                if size != target_size:
                    raise ListingMismatchError(
                        source, posixpath.normpath(posixpath.join(base_dir, parent, name)), size,
                        link.host, posixpath.normpath(posixpath.join(link.directory, parent, name)), target_size,
                    )
        queue.extend(_child(rel, name) for name, size in source_listing.items() if size == DIRECTORY)
    logger.debug("Trees under %s:%s match on %d target(s)", source, base_dir, len(links))
    return True


def total_size(host: Host, path: str) -> int:
    """Recursively sum the sizes of files under *path* on *host*."""
    total = 0
    for name, size in list_directory(host, path).items():
        if size == DIRECTORY:
            total += total_size(host, posixpath.join(path, name))
        else:
            total += size
    return total
