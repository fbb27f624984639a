"""Tests for the process lifespan, logging setup and metrics exposition."""

import json
import logging

import pytest
import structlog

from modcore.core import ModerationCore
from modcore.logging_config import configure_logging
from modcore.main import lifespan
from modcore.metrics import render_metrics
from modcore.schemas.decision import DecisionAction
from tests.factories import make_content


@pytest.fixture
def reset_structlog():
    yield
    structlog.reset_defaults()


class TestLifespan:
    @pytest.mark.asyncio
    async def test_core_is_built_from_settings(self, app_settings, engine, reset_structlog):
        async with lifespan(app_settings) as core:
            assert isinstance(core, ModerationCore)
            decision = await core.moderate(make_content())
            assert decision.action == DecisionAction.allow

        assert b"modcore_decisions_total" in render_metrics()


class TestLogging:
    def test_events_carry_bound_context(self, caplog, reset_structlog):
        configure_logging("INFO", service="modcore-test")
        with caplog.at_level(logging.INFO):
            with structlog.contextvars.bound_contextvars(content_id="c9"):
                structlog.get_logger("modcore.test").info("probe", action="allow")

        [record] = [r for r in caplog.records if r.name == "modcore.test"]
        payload = json.loads(record.getMessage())
        assert payload["event"] == "probe"
        assert payload["content_id"] == "c9"
        assert payload["service"] == "modcore-test"
        assert payload["level"] == "info"
