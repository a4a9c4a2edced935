"""Tests for logging setup."""

import logging

from loguru import logger

from kgrag.core.logging import InterceptHandler, setup_logging


def test_stdlib_loggers_are_routed_to_loguru():
    setup_logging("debug")

    openai_logger = logging.getLogger("openai")
    assert isinstance(openai_logger.handlers[0], InterceptHandler)
    assert openai_logger.propagate is False


def test_intercepted_records_reach_loguru():
    setup_logging("info")
    messages = []
    sink_id = logger.add(messages.append, level="INFO", format="{message}")
    try:
        logging.getLogger("httpx").warning("retrying request")
    finally:
        logger.remove(sink_id)

    assert any("retrying request" in m for m in messages)
