"""
Unit tests for logging utilities
"""

import logging

import pytest
from muscletract.utils.logger import MuscleTractLogger, format_parameter, log_decision


class TestMuscleTractLogger:
    """Test handler configuration of the package logger"""

    def test_console_only(self):
        """Test that no log file is created without a directory"""
        configured = MuscleTractLogger(level=logging.WARNING)
        assert configured.log_file is None
        assert configured.console_handler.level == logging.WARNING
        assert configured.logger.level == logging.WARNING
        assert len(configured.logger.handlers) == 1

    def test_log_file_keeps_debug(self, tmp_path):
        """Test that the log file receives debug messages below the console level"""
        configured = MuscleTractLogger(level=logging.WARNING, log_dir=str(tmp_path / "logs"))
        logging.getLogger("muscletract.tractography.goodness").debug("layer 5 window clipped")

        assert configured.console_handler.level == logging.WARNING
        assert configured.logger.level == logging.DEBUG
        assert "layer 5 window clipped" in configured.log_file.read_text()

    def test_set_level(self):
        """Test changing the console level"""
        configured = MuscleTractLogger(level=logging.INFO)
        configured.set_level(logging.DEBUG)
        assert configured.console_handler.level == logging.DEBUG
        assert configured.logger.level == logging.DEBUG


class TestDecisionLog:
    """Test the markdown decision log"""

    def test_format_parameter(self):
        """Test rendering of parameter values"""
        assert format_parameter(None) == "not set"
        assert format_parameter(0.25) == "0.25"
        assert format_parameter([192.0, 64.0, 7.0]) == "192, 64, 7"
        assert format_parameter(10) == "10"

    def test_entries_appended(self, tmp_path):
        """Test that records accumulate as parameter tables"""
        output_file = tmp_path / "decisions" / "log.md"
        for run in ("A", "B"):
            log_decision(
                decision_id=f"SELECTION-{run}",
                component="fiber_selection",
                decision="Kept 25 fiber tracts",
                rationale="Threshold cascade",
                parameters={'min_distance': 10.0, 'sampling_frequency': None},
                output_file=str(output_file)
            )

        text = output_file.read_text()
        assert "[SELECTION-A] fiber_selection" in text
        assert "[SELECTION-B] fiber_selection" in text
        assert "| min_distance | 10 |" in text
        assert "| sampling_frequency | not set |" in text


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
