"""
Logging utilities for MuscleTract

All package modules log through children of the "muscletract" logger. This
module attaches the console handler (and, on request, a timestamped debug
log file) to that logger, and keeps the markdown decision log in which the
selection criteria applied to each dataset are recorded.
"""

import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Optional

LOGGER_NAME = "muscletract"
CONSOLE_FORMAT = '%(levelname)s: %(message)s'
FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'


class MuscleTractLogger:
    """
    Handlers of the package logger

    The console shows messages at the requested level. A log file, when
    enabled, receives everything down to DEBUG.
    """

    def __init__(self, level: int = logging.INFO, log_dir: Optional[str] = None):
        self.logger = logging.getLogger(LOGGER_NAME)
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        self.console_handler = logging.StreamHandler(sys.stdout)
        self.console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        self.logger.addHandler(self.console_handler)

        self.log_file: Optional[Path] = None
        if log_dir is not None:
            log_path = Path(log_dir)
            log_path.mkdir(parents=True, exist_ok=True)
            self.log_file = log_path / f"muscletract_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

            file_handler = logging.FileHandler(self.log_file)
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
            self.logger.addHandler(file_handler)

        self.set_level(level)

        if self.log_file is not None:
            self.logger.info(f"Logging to: {self.log_file}")

    def set_level(self, level: int):
        """Change the console level; the log file keeps DEBUG"""
        self.console_handler.setLevel(level)
        self.logger.setLevel(min(level, logging.DEBUG) if self.log_file else level)


_global_logger: Optional[MuscleTractLogger] = None


def get_logger(level: Optional[int] = None, log_dir: Optional[str] = None) -> logging.Logger:
    """
    Get the package logger, configuring it on first use

    Args:
        level: Console level; changes the level of an existing logger
        log_dir: Start a new log file in this directory
    """
    global _global_logger
    if _global_logger is None or log_dir is not None:
        _global_logger = MuscleTractLogger(
            level if level is not None else logging.INFO, log_dir=log_dir
        )
    elif level is not None:
        _global_logger.set_level(level)
    return _global_logger.logger


def format_parameter(value) -> str:
    """Render a parameter value for the decision log"""
    if value is None:
        return "not set"
    if isinstance(value, float):
        return f"{value:.6g}"
    if isinstance(value, (list, tuple)):
        return ", ".join(format_parameter(v) for v in value)
    return str(value)


def log_decision(
    decision_id: str,
    component: str,
    decision: str,
    rationale: str,
    parameters: dict,
    output_file: str = "analysis_and_decisions/decision_log.md"
) -> Path:
    """
    Append a decision record to a markdown log

    Args:
        decision_id: Unique identifier for the record
        component: Processing step that made the decision
        decision: What was kept or rejected
        rationale: Criteria behind the decision
        parameters: Thresholds and counts, rendered as a table
        output_file: Markdown file, created if missing

    Returns:
        Path of the decision log
    """
    lines = [
        "",
        f"### [{decision_id}] {component}",
        f"**Recorded**: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        "",
        f"**Decision**: {decision}",
        "",
        f"**Rationale**: {rationale}",
        "",
        "| Parameter | Value |",
        "|---|---|",
    ]
    lines += [f"| {key} | {format_parameter(value)} |" for key, value in parameters.items()]
    lines += ["", "---", ""]

    output_path = Path(output_file)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, 'a', encoding='utf-8') as f:
        f.write("\n".join(lines))

    get_logger().info(f"Decision logged: {decision_id}")
    return output_path
