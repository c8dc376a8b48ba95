"""Tests for navigation error classification."""

import pytest

from app.errors import (
    InspectionTimeout,
    NavigationCause,
    NavigationFailure,
    classify_navigation_error,
)


@pytest.mark.parametrize("raw, cause", [
    ("net::ERR_NAME_NOT_RESOLVED at https://nope.invalid", NavigationCause.DNS),
    ("net::ERR_CONNECTION_REFUSED at http://localhost:1", NavigationCause.CONNECTION_REFUSED),
    ("net::ERR_CONNECTION_TIMED_OUT", NavigationCause.CONNECTION_TIMEOUT),
    ("net::ERR_INTERNET_DISCONNECTED", NavigationCause.NO_NETWORK),
    ("net::ERR_CERT_AUTHORITY_INVALID", NavigationCause.CERTIFICATE),
    ("net::ERR_SSL_PROTOCOL_ERROR", NavigationCause.SSL),
    ("Timeout 30000ms exceeded.", NavigationCause.TIMEOUT),
    ("Evaluation failed: ReferenceError", NavigationCause.SCRIPT_EVALUATION),
    ("Execution context was destroyed", NavigationCause.SCRIPT_EVALUATION),
    ("something odd", NavigationCause.UNKNOWN),
])
def test_classification(raw, cause):
    failure = classify_navigation_error(RuntimeError(raw))
    assert failure.cause == cause
    assert failure.details == raw
    assert failure.message


def test_unknown_keeps_raw_text():
    failure = classify_navigation_error(RuntimeError("something odd"))
    assert "something odd" in failure.message


def test_already_classified_passes_through():
    original = NavigationFailure("x", cause=NavigationCause.DNS)
    assert classify_navigation_error(original) is original


def test_timeout_message():
    error = InspectionTimeout(90)
    assert error.cause == NavigationCause.TIMEOUT
    assert "90 seconds" in error.message
