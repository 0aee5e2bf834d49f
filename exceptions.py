"""
Monitor-specific exceptions.

Estimation itself never raises in steady state: inconclusive chunks come
back as zero-valued readings. These exceptions cover inputs and
configuration that cannot be processed at all.
"""

from typing import Any, Dict, Optional


class PepMonitorError(Exception):
    """Base exception for the pitch/pressure monitor."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.details = details or {}


class InvalidInputError(PepMonitorError, ValueError):
    """Raised when a sample buffer or sensor reading cannot be processed."""

    def __init__(self, message: str, **details: Any):
        super().__init__(message, error_code="INVALID_INPUT", details=details)


class ConfigError(PepMonitorError, ValueError):
    """Raised when a configuration value makes estimation impossible."""

    def __init__(self, field_name: str, value: Any, reason: str):
        super().__init__(
            f"Invalid config value {field_name}={value!r}: {reason}",
            error_code="INVALID_CONFIG",
            details={"field": field_name, "value": value, "reason": reason},
        )
        self.field_name = field_name
