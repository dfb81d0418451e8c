#!/usr/bin/env python3
"""
unpin Core Module
Job lifecycle, logging sink, errors and device selection
"""

from .exceptions import (
    UnpinError,
    UnresolvableTarget,
    InstallationConflict,
    CallbackConsumed,
    BridgeError,
    SessionError
)
from .jobs import Job, JobManager
from .reporter import Reporter

__all__ = [
    'UnpinError',
    'UnresolvableTarget',
    'InstallationConflict',
    'CallbackConsumed',
    'BridgeError',
    'SessionError',
    'Job',
    'JobManager',
    'Reporter'
]
