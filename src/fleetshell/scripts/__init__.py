"""Shell command templates for remote execution.

Templates are stored as .sh files alongside this module, loaded via
:func:`read_script` and filled in with :meth:`str.format`.
"""

from __future__ import annotations

from importlib import resources


def read_script(name: str) -> str:
    """Read a shell template from the scripts package.

    Args:
        name: Script filename (e.g. ``"wait_port.sh"``).

    Returns:
        Script content as a string.
    """
    return resources.files(__package__).joinpath(name).read_text(encoding="utf-8")
