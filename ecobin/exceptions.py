"""
Custom exceptions for the EcoBin pipeline.

Taxonomy:
- TransientStoreError     — store unreachable; the next scheduled tick retries
- DataIntegrityViolation  — a write was rejected (e.g. double credit)
- InsufficientPoints      — redemption only, returned to the caller
- ConfigurationError      — bad thresholds or cron config; fatal at startup
- JobTimeoutError         — a job tick exceeded its time budget
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Standard error codes for the pipeline."""
    UNKNOWN_ERROR = "E1000"
    CONFIGURATION_ERROR = "E1002"
    TIMEOUT_ERROR = "E1003"

    STORE_UNAVAILABLE = "E2000"
    DATA_INTEGRITY = "E2003"

    INSUFFICIENT_POINTS = "E3000"


class EcoBinError(Exception):
    """
    Base exception for the pipeline.

    All custom exceptions inherit from this class.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.timestamp = datetime.utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/API responses."""
        result = {
            "error_code": self.error_code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code.value}] {self.message}"


class TransientStoreError(EcoBinError):
    """The store could not be reached or dropped the connection."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code=ErrorCode.STORE_UNAVAILABLE, **kwargs)


class DataIntegrityViolation(EcoBinError):
    """A write was rejected by an integrity constraint."""

    def __init__(self, message: str, entity: str = "", entity_id: str = "", **kwargs):
        super().__init__(message, error_code=ErrorCode.DATA_INTEGRITY, **kwargs)
        self.entity = entity
        self.entity_id = entity_id


class InsufficientPoints(EcoBinError):
    """Redemption cost exceeds the user's current balance."""

    def __init__(self, user_id: str, balance: int, requested: int):
        super().__init__(
            f"Insufficient points: balance {balance}, requested {requested}",
            error_code=ErrorCode.INSUFFICIENT_POINTS,
            details={"user_id": user_id, "balance": balance, "requested": requested},
        )
        self.user_id = user_id
        self.balance = balance
        self.requested = requested


class ConfigurationError(EcoBinError):
    """Error raised when configuration is invalid."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        super().__init__(message, error_code=ErrorCode.CONFIGURATION_ERROR, **kwargs)
        self.config_key = config_key


class JobTimeoutError(EcoBinError):
    """A scheduled job exceeded its execution budget and was aborted."""

    def __init__(self, job_name: str, timeout_seconds: float):
        super().__init__(
            f"Job {job_name} exceeded {timeout_seconds:.0f}s",
            error_code=ErrorCode.TIMEOUT_ERROR,
            details={"job": job_name, "timeout_seconds": timeout_seconds},
        )
        self.job_name = job_name
        self.timeout_seconds = timeout_seconds
