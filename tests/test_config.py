"""Tests for spillgrid configuration."""

from __future__ import annotations

import logging

import pytest

from spillgrid.config import Settings, configure_logging


class TestSettings:
    def test_explicit_values(self) -> None:
        config = Settings(log_level="DEBUG", showdata_rows=3, max_spill_cells=10, log_operations=False)
        assert config.showdata_rows == 3
        assert config.max_spill_cells == 10
        assert config.log_operations is False

    def test_numeric_strings_coerced(self) -> None:
        assert Settings(showdata_rows="7").showdata_rows == 7


class TestConfigureLogging:
    def test_sets_package_level(self) -> None:
        logger = logging.getLogger("spillgrid")
        previous = logger.level
        try:
            configure_logging(Settings(log_level="debug"))
            assert logger.level == logging.DEBUG
        finally:
            logger.setLevel(previous)

    def test_unknown_level(self) -> None:
        with pytest.raises(ValueError, match="Unknown log level"):
            configure_logging(Settings(log_level="chatty"))
