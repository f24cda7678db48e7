"""
Shared utilities: logging and decision records.
"""

from .logger import MuscleTractLogger, get_logger, log_decision

__all__ = [
    'MuscleTractLogger',
    'get_logger',
    'log_decision'
]
