"""fleetshell — pooled remote execution and chained directory copies for a fleet of machines."""

__version__ = "0.1.0"
