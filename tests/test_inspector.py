"""Tests for the end-to-end inspection orchestration (browser mocked)."""

import asyncio
import json
from contextlib import asynccontextmanager
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from conftest import make_font, run

from app import database, inspector
from app.errors import InspectionTimeout, NavigationCause, NavigationFailure
from app.inspector import error_payload, inspect, inspect_streaming, normalize_url
from app.models import InspectionResult


@pytest.fixture
def fake_session(monkeypatch):
    state = {"opened": 0, "closed": 0, "cancelled": False}

    @asynccontextmanager
    async def session(settings, cancel_event=None):
        state["opened"] += 1
        try:
            yield SimpleNamespace(page=object())
        finally:
            state["closed"] += 1
            state["cancelled"] = cancel_event is not None and cancel_event.is_set()

    monkeypatch.setattr(inspector, "browser_session", session)
    return state


def _events(chunks):
    return [json.loads(c[len("data: "):]) for c in chunks]


class TestNormalizeUrl:
    def test_adds_scheme(self):
        assert normalize_url("  example.com ") == "https://example.com"
        assert normalize_url("http://example.com") == "http://example.com"

    def test_empty(self):
        with pytest.raises(NavigationFailure):
            normalize_url("  ")


class TestInspect:
    def test_success(self, settings, fake_session, monkeypatch):
        expected = InspectionResult(url="https://example.com", downloaded_fonts=[make_font("Inter.woff2")])
        monkeypatch.setattr(inspector, "_inspect_page", AsyncMock(return_value=expected))

        assert run(inspect("example.com", settings=settings)) is expected
        assert fake_session == {"opened": 1, "closed": 1, "cancelled": False}

    def test_timeout_releases_browser(self, settings, fake_session, monkeypatch):
        async def hang(page, context, store, progress):
            await asyncio.Event().wait()

        monkeypatch.setattr(inspector, "_inspect_page", hang)
        quick = settings.model_copy(update={"inspection_timeout": 0.2})

        with pytest.raises(InspectionTimeout) as exc_info:
            run(inspect("https://example.com", settings=quick))
        assert exc_info.value.cause == NavigationCause.TIMEOUT
        assert fake_session["closed"] == 1
        assert fake_session["cancelled"]

    def test_navigation_failure_propagates(self, settings, fake_session, monkeypatch):
        failure = NavigationFailure("Website domain could not be found", cause=NavigationCause.DNS)
        monkeypatch.setattr(inspector, "_inspect_page", AsyncMock(side_effect=failure))

        with pytest.raises(NavigationFailure) as exc_info:
            run(inspect("https://nope.invalid", settings=settings))
        assert exc_info.value is failure
        assert fake_session["closed"] == 1

    def test_error_payload(self):
        payload = error_payload(NavigationFailure("gone", cause=NavigationCause.DNS, details="raw"), "https://x")
        assert payload == {"error": "gone", "details": "raw", "cause": "dns", "url": "https://x"}


class TestInspectStreaming:
    def _collect(self, gen):
        async def consume():
            return [chunk async for chunk in gen]

        return _events(run(consume()))

    def test_streams_progress_and_result(self, settings, monkeypatch):
        async def fake_inspect(url, options, settings, store, progress):
            await progress("loading", {"message": "Loading"})
            await progress("resolved", {"groups": 2})
            return InspectionResult(url=url)

        monkeypatch.setattr(inspector, "inspect", fake_inspect)
        monkeypatch.setattr(database, "save_inspection", AsyncMock(return_value={"id": "row-1"}))

        events = self._collect(inspect_streaming("example.com", settings=settings))
        assert [e["type"] for e in events] == ["step", "step", "step", "result", "done"]
        assert [e["step"] for e in events[:3]] == ["starting", "loading", "resolved"]
        assert events[-2]["inspection_id"] == "row-1"
        assert events[-2]["result"]["url"] == "https://example.com"

    def test_database_unavailable_is_a_warning(self, settings, monkeypatch):
        async def fake_inspect(url, options, settings, store, progress):
            return InspectionResult(url=url)

        monkeypatch.setattr(inspector, "inspect", fake_inspect)
        monkeypatch.setattr(database, "save_inspection", AsyncMock(side_effect=ValueError("no credentials")))

        types = [e["type"] for e in self._collect(inspect_streaming("https://example.com", settings=settings))]
        assert types == ["step", "warning", "result", "done"]

    def test_client_disconnect_cancels_pending_tasks(self, settings, monkeypatch):
        async def fake_inspect(url, options, settings, store, progress):
            await progress("loading", {"message": "Loading"})
            await asyncio.Event().wait()

        monkeypatch.setattr(inspector, "inspect", fake_inspect)

        async def disconnect_mid_stream():
            received = []

            async def consume():
                async for chunk in inspect_streaming("https://example.com", settings=settings):
                    received.append(chunk)

            consumer = asyncio.create_task(consume())
            for _ in range(100):
                if len(received) == 2:
                    break
                await asyncio.sleep(0.01)
            consumer.cancel()
            with pytest.raises(asyncio.CancelledError):
                await consumer
            for _ in range(3):
                await asyncio.sleep(0)
            leftover = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
            return received, leftover

        received, leftover = run(disconnect_mid_stream())
        assert [e["step"] for e in _events(received)] == ["starting", "loading"]
        assert leftover == []

    def test_failure_event(self, settings, monkeypatch):
        async def fake_inspect(url, options, settings, store, progress):
            raise NavigationFailure("Website refused the connection", cause=NavigationCause.CONNECTION_REFUSED)

        monkeypatch.setattr(inspector, "inspect", fake_inspect)
        events = self._collect(inspect_streaming("https://example.com", settings=settings))

        assert events[-2]["type"] == "error"
        assert events[-2]["cause"] == "connection_refused"
        assert events[-1] == {"type": "done", "inspection_id": None, "error": "Website refused the connection"}

    def test_empty_url(self, settings):
        events = self._collect(inspect_streaming("", settings=settings))
        assert [e["type"] for e in events] == ["error", "done"]
