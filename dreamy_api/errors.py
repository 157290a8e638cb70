from typing import Any, Dict, Optional

import httpx


class ProxyError(Exception):
    """Base for every failure the job proxy reports back to the caller."""

    status_code = 500

    def __init__(self, message: str, detail: Any = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        if self.detail is not None:
            body["detail"] = self.detail
        return body


class ClientInputError(ProxyError):
    status_code = 400


class ConfigurationError(ProxyError):
    status_code = 500


class SubmissionError(ProxyError):
    status_code = 500


class UpstreamFailure(ProxyError):
    status_code = 502


class PollingTimeout(ProxyError):
    status_code = 504


class TransportError(ProxyError):
    status_code = 500


class ClientDisconnected(ProxyError):
    # nginx convention, the caller never sees it
    status_code = 499


def response_detail(response: httpx.Response) -> Any:
    """Best-effort remote error detail: parsed JSON when possible, else text."""
    try:
        return response.json()
    except ValueError:
        text = response.text
        return text or f"HTTP {response.status_code}"


def exception_detail(exc: Exception) -> Optional[str]:
    return str(exc) or type(exc).__name__
