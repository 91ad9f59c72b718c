"""Tests for logging setup."""

import logging
from collections.abc import Iterator

import pytest
import structlog

from reality_dedup.logging import bound_run, configure_logging


@pytest.fixture
def restore_structlog() -> Iterator[None]:
    yield
    structlog.reset_defaults()
    for name in ("httpx", "httpcore", "anthropic"):
        logging.getLogger(name).setLevel(logging.NOTSET)


class TestConfigureLogging:
    def test_client_libraries_quiet_at_info(self, restore_structlog: None) -> None:
        configure_logging(level=logging.INFO)
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("anthropic").level == logging.WARNING

    def test_client_libraries_verbose_at_debug(self, restore_structlog: None) -> None:
        configure_logging(json_output=True, level=logging.DEBUG)
        assert logging.getLogger("httpx").level == logging.DEBUG


class TestBoundRun:
    def test_run_id_bound_inside_block(self) -> None:
        with bound_run(7):
            assert structlog.contextvars.get_contextvars()["run_id"] == 7
        assert "run_id" not in structlog.contextvars.get_contextvars()
