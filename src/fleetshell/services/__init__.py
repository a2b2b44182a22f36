"""Service-control plugins.

Each plugin knows how one init system starts, stops and restarts
services.  Plugins are discovered by :func:`fleetshell.bootstrap.init_fleetshell`.
"""
