"""Tests for navigation and page settling."""

import asyncio
import time

import pytest

from conftest import FakePage, run

from app.errors import NavigationCause, NavigationFailure
from app.load_detector import (
    ANIMATIONS_SETTLED_JS,
    FONTS_READY_JS,
    LAZY_LOAD_PROBE_JS,
    MEDIA_LOADED_JS,
    PAGE_SUMMARY_JS,
    navigate,
    settle,
    wait_for_page_settled,
)


async def _hang(arg):
    await asyncio.Event().wait()


def _settled_page(**overrides):
    results = {
        FONTS_READY_JS: "ready",
        ANIMATIONS_SETTLED_JS: {"state": "none", "count": 0},
        MEDIA_LOADED_JS: {"state": "loaded", "total": 2, "loaded": 2},
        LAZY_LOAD_PROBE_JS: {"initialHeight": 900, "finalHeight": 900, "attempts": 1, "grew": False},
        PAGE_SUMMARY_JS: {"images": 2, "textLength": 120},
    }
    results.update(overrides)
    return FakePage(results)


class TestNavigate:
    def test_first_strategy_succeeds(self, settings):
        page = FakePage()
        assert run(navigate(page, "https://example.com", settings)) == "networkidle"
        assert page.goto_calls == [("https://example.com", "networkidle", 1000)]

    def test_falls_back_on_timeout(self, settings):
        page = FakePage(goto_errors=[TimeoutError("Timeout 1000ms exceeded."), None])
        assert run(navigate(page, "https://example.com", settings)) == "load"
        assert [c[1:] for c in page.goto_calls] == [("networkidle", 1000), ("load", 750)]

    def test_partial_when_fonts_already_captured(self, settings):
        page = FakePage(goto_errors=[TimeoutError("Timeout 1000ms exceeded.")])
        assert run(navigate(page, "https://example.com", settings, lambda: 3)) == "networkidle-partial"

    def test_all_strategies_time_out(self, settings):
        page = FakePage(goto_errors=[TimeoutError("Timeout exceeded")] * 3)
        with pytest.raises(NavigationFailure) as exc_info:
            run(navigate(page, "https://example.com", settings))
        assert exc_info.value.cause == NavigationCause.TIMEOUT
        assert len(page.goto_calls) == 3

    def test_connection_errors_fail_fast(self, settings):
        page = FakePage(goto_errors=[RuntimeError("net::ERR_NAME_NOT_RESOLVED at https://nope.invalid")])
        with pytest.raises(NavigationFailure) as exc_info:
            run(navigate(page, "https://nope.invalid", settings))
        assert exc_info.value.cause == NavigationCause.DNS
        assert len(page.goto_calls) == 1


class TestWaitForPageSettled:
    def test_quiet_page(self, settings):
        page = _settled_page()
        report = run(wait_for_page_settled(page, settings))
        assert report.timed_out == []
        assert report.failed == []
        assert report.probes["fonts"] == "ready"

    def test_never_resolving_probe_is_bounded(self, settings):
        page = _settled_page(**{FONTS_READY_JS: _hang, ANIMATIONS_SETTLED_JS: _hang})
        fast = settings.model_copy(update={"settle_timeout": 0.5})

        started = time.monotonic()
        report = run(wait_for_page_settled(page, fast))
        assert time.monotonic() - started < 2.0
        assert "settle" in report.timed_out

    def test_probe_timeout_does_not_stop_later_phases(self, settings):
        page = _settled_page(**{ANIMATIONS_SETTLED_JS: _hang})
        fast = settings.model_copy(update={"animation_settle_timeout": 10})
        report = run(wait_for_page_settled(page, fast))
        assert "animations" in report.timed_out
        assert "media" in report.probes

    def test_failing_probe_is_recorded(self, settings):
        page = _settled_page(**{MEDIA_LOADED_JS: RuntimeError("boom")})
        report = run(wait_for_page_settled(page, settings))
        assert report.failed == ["media"]

    def test_in_page_timeout_state(self, settings):
        page = _settled_page(**{MEDIA_LOADED_JS: {"state": "timeout", "total": 3, "loaded": 1}})
        assert "media" in run(wait_for_page_settled(page, settings)).timed_out


class TestSettle:
    def test_collects_summary(self, settings):
        report = run(settle(_settled_page(), "https://example.com", settings))
        assert report.navigation_strategy == "networkidle"
        assert report.page_summary["images"] == 2

    def test_summary_failure_is_fatal(self, settings):
        page = _settled_page(**{PAGE_SUMMARY_JS: RuntimeError("Execution context was destroyed")})
        with pytest.raises(NavigationFailure) as exc_info:
            run(settle(page, "https://example.com", settings))
        assert exc_info.value.cause == NavigationCause.SCRIPT_EVALUATION
