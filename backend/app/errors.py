"""Error taxonomy for font inspection runs."""

from enum import Enum
from typing import Any


class InspectionError(Exception):
    """Base exception for all inspection errors."""

    def __init__(self, message: str, details: Any | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class BrowserLaunchFailure(InspectionError):
    """No usable browser executable, or the browser process failed to start."""


class NavigationCause(str, Enum):
    DNS = "dns"
    CONNECTION_REFUSED = "connection_refused"
    CONNECTION_TIMEOUT = "connection_timeout"
    NO_NETWORK = "no_network"
    SSL = "ssl"
    CERTIFICATE = "certificate"
    TIMEOUT = "timeout"
    SCRIPT_EVALUATION = "script_evaluation"
    UNKNOWN = "unknown"


class NavigationFailure(InspectionError):
    """The page could not be loaded (or settled) well enough to inspect."""

    def __init__(self, message: str, cause: NavigationCause = NavigationCause.UNKNOWN,
                 details: Any | None = None):
        super().__init__(message, details)
        self.cause = cause


class InspectionTimeout(NavigationFailure):
    """The whole run exceeded its outer timeout."""

    def __init__(self, seconds: float):
        super().__init__(
            f"Inspection did not finish within {seconds:g} seconds",
            cause=NavigationCause.TIMEOUT,
        )


class MetadataExtractionFailure(InspectionError):
    """A single font binary could not be parsed. Always handled locally."""


class ScreenshotCaptureFailure(InspectionError):
    """Full-page capture failed. The run continues without screenshots."""


class AnnotationFailure(InspectionError):
    """Overlay injection failed. The run continues with zero annotations."""


# Ordered: first matching needle wins. Certificate errors are checked before
# the generic SSL needle because both start with net::ERR_.
_NAVIGATION_PATTERNS = [
    ("net::err_name_not_resolved", NavigationCause.DNS,
     "Website domain could not be found (DNS resolution failed)"),
    ("net::err_connection_refused", NavigationCause.CONNECTION_REFUSED,
     "Website refused the connection"),
    ("net::err_connection_timed_out", NavigationCause.CONNECTION_TIMEOUT,
     "Connection to website timed out"),
    ("net::err_internet_disconnected", NavigationCause.NO_NETWORK,
     "No internet connection available"),
    ("net::err_cert_", NavigationCause.CERTIFICATE,
     "SSL certificate error"),
    ("net::err_ssl_", NavigationCause.SSL,
     "SSL/TLS connection error"),
    ("timeout", NavigationCause.TIMEOUT,
     "Website took too long to respond or load completely (timeout)"),
    ("evaluation failed", NavigationCause.SCRIPT_EVALUATION,
     "Website loading failed during content analysis (possibly due to JavaScript errors)"),
    ("execution context was destroyed", NavigationCause.SCRIPT_EVALUATION,
     "Website loading failed during content analysis (possibly due to JavaScript errors)"),
]


def classify_navigation_error(error: BaseException) -> NavigationFailure:
    """Map a raw navigation/evaluation error to a NavigationFailure with a readable message."""
    if isinstance(error, NavigationFailure):
        return error

    raw = str(error) or error.__class__.__name__
    lowered = raw.lower()
    for needle, cause, message in _NAVIGATION_PATTERNS:
        if needle in lowered:
            return NavigationFailure(message, cause=cause, details=raw)

    return NavigationFailure(
        f"Failed to load the website completely: {raw}",
        cause=NavigationCause.UNKNOWN,
        details=raw,
    )
