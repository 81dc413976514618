# cronwire/utils/__init__.py
"""Utility functions for the scheduler engine."""

from cronwire.utils.logging import (
    configure_logging,
    configure_plain_logging,
    configure_structured_logging,
    get_job_name,
    get_logger,
    reset_job_name,
    set_job_name,
)

__all__ = [
    "configure_logging",
    "configure_plain_logging",
    "configure_structured_logging",
    "get_job_name",
    "get_logger",
    "reset_job_name",
    "set_job_name",
]
