"""Error taxonomy for the generation pipeline."""

from __future__ import annotations

from typing import Any, Dict, Optional


class PipelineError(Exception):
    """Base error carrying the HTTP status and payload used in the response envelope."""

    status_code = 500

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        data: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.data = dict(data or {})


class ConfigError(PipelineError):
    """Required environment configuration is missing."""

    status_code = 500


class AuthError(PipelineError):
    """Missing or invalid bearer token."""

    status_code = 401


class ValidationError(PipelineError):
    """Bad request input, or no calibration to derive parameters from."""

    status_code = 400


class RateLimitError(PipelineError):
    status_code = 429


class UpstreamError(PipelineError):
    """Non-retryable provider failure or retry exhaustion."""

    status_code = 502


class PersistenceError(PipelineError):
    """Storage write failure. Never retried."""

    status_code = 500


class AuditError(PipelineError):
    """Audit write failure. Always swallowed by the audit logger."""

    status_code = 500
