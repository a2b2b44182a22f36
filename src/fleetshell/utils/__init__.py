"""Small shared helpers."""

from __future__ import annotations

import logging

NOISY_LOGGERS = ("paramiko", "paramiko.transport", "concurrent.futures")


def suppress_noisy_loggers(level: int = logging.WARNING) -> None:
    """Raise the level of chatty third-party loggers.

    paramiko logs every transport negotiation at INFO, which drowns out
    per-host progress lines when several sessions are opened at once.
    """
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level)
