"""Bootstrap fleetshell's plugin system on scitrera-app-framework."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from scitrera_app_framework import Variables, register_plugin, get_extensions
from scitrera_app_framework.util import find_types_in_modules

from fleetshell.services.base import EXT_SERVICE

if TYPE_CHECKING:
    from fleetshell.services.base import ServicePlugin

logger = logging.getLogger(__name__)

# Module-level singleton for the fleetshell Variables instance
_variables: Variables | None = None


def init_fleetshell(v: Variables | None = None, log_level: str = "WARNING") -> Variables:
    """Initialize fleetshell's plugin system.

    Args:
        v: Optional pre-existing Variables instance to reuse.
        log_level: SAF log level (default WARNING to reduce verbosity).

    Returns:
        The initialized Variables instance.
    """
    global _variables

    if _variables is not None and v is None:
        return _variables

    if v is None:
        from scitrera_app_framework import init_framework_desktop
        v = init_framework_desktop("fleetshell", log_level=log_level, fault_handler=False,
                                   shutdown_hooks=False, fixed_logger=logger)

        from fleetshell.utils import suppress_noisy_loggers
        suppress_noisy_loggers()

    _variables = v

    from fleetshell.services.base import ServicePlugin

    discovered = list(find_types_in_modules("fleetshell.services", ServicePlugin))
    for plugin_cls in discovered:
        try:
            register_plugin(plugin_cls, v=v)
            logger.debug("Registered service manager: %s", plugin_cls.__name__)
        except (ValueError, TypeError) as e:
            logger.debug("Skipping service manager %s: %s", plugin_cls.__name__, e)

    return v


def get_variables() -> Variables:
    """Get the fleetshell Variables instance, initializing if needed."""
    global _variables
    if _variables is None:
        init_fleetshell()
    return _variables


def get_service_manager(name: str, v: Variables | None = None) -> ServicePlugin:
    """Get a service-control plugin by name.

    Args:
        name: Manager name (e.g. "sysv", "systemd")
        v: Optional Variables instance; uses singleton if not provided

    Raises:
        ValueError: If no plugin has that name
    """
    if v is None:
        v = get_variables()

    managers = {m.manager_name: m for m in get_extensions(EXT_SERVICE, v=v).values()}
    if name not in managers:
        raise ValueError("Unknown service manager: %r. Available: %s" % (name, ", ".join(sorted(managers))))
    return managers[name]
