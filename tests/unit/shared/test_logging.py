"""Unit tests for adhar_cli.shared.logging module."""

import json
import logging

import pytest

from adhar_cli.shared.logging import configure_logging, get_logger, level_for_verbosity


@pytest.mark.cli_unit
class TestLevelForVerbosity:
    """Tests for mapping -v counts to levels."""

    @pytest.mark.parametrize(
        ("verbose", "level"),
        [(0, "warning"), (1, "info"), (2, "debug"), (5, "debug"), (-1, "warning")],
    )
    def test_levels(self, verbose, level):
        """Test each count maps to the expected level."""
        assert level_for_verbosity(verbose) == level


@pytest.mark.cli_unit
class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_json_log_file(self, tmp_path):
        """Test JSON lines are written to the log file at the chosen level."""
        log_file = tmp_path / "logs" / "adhar.log"
        configure_logging("info", log_file=log_file, json_output=True)

        logger = get_logger("adhar_cli.test")
        logger.debug("hidden event")
        logger.info("cluster created", cluster_id="kind-adhar")
        logging.shutdown()

        lines = [json.loads(line) for line in log_file.read_text().splitlines()]
        assert len(lines) == 1
        assert lines[0]["event"] == "cluster created"
        assert lines[0]["cluster_id"] == "kind-adhar"
        assert lines[0]["level"] == "info"
