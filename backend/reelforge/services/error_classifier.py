"""
Error Classifier - Classify errors as retryable or non-retryable
"""

from typing import Dict, Any, Optional
import httpx
from replicate.exceptions import ModelError, ReplicateError

from reelforge.core.provider import ProviderError
from reelforge.services.errors import PreconditionError


class ErrorClassifier:
    """
    Classify errors for retry logic and user-facing messages
    """

    # Error codes
    ERROR_NETWORK_TIMEOUT = "NETWORK_TIMEOUT"
    ERROR_NETWORK_ERROR = "NETWORK_ERROR"
    ERROR_PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    ERROR_PROVIDER_RATE_LIMIT = "PROVIDER_RATE_LIMIT"
    ERROR_PROVIDER_AUTH = "PROVIDER_AUTH"
    ERROR_PROVIDER_INVALID_PARAM = "PROVIDER_INVALID_PARAM"
    ERROR_PROVIDER_RUN_FAILED = "PROVIDER_RUN_FAILED"
    ERROR_FFMPEG_FAILED = "FFMPEG_FAILED"
    ERROR_VALIDATION_FAILED = "VALIDATION_FAILED"
    ERROR_JOB_TIMEOUT = "JOB_TIMEOUT"
    ERROR_PROVIDER_NO_OUTPUT = "PROVIDER_NO_OUTPUT"
    ERROR_RETRY_EXHAUSTED = "RETRY_EXHAUSTED"
    ERROR_SUPERSEDED = "SUPERSEDED"
    ERROR_UNKNOWN = "UNKNOWN_ERROR"

    def classify(self, error: Exception) -> Dict[str, Any]:
        """
        Classify error with user-facing message

        Args:
            error: Exception to classify

        Returns:
            Dict with code, message, classification, retryable
        """
        if isinstance(error, httpx.TimeoutException):
            return self._result(
                self.ERROR_NETWORK_TIMEOUT,
                "Network timeout while connecting to the generation service",
                retryable=True,
            )

        if isinstance(error, httpx.NetworkError):
            return self._result(
                self.ERROR_NETWORK_ERROR,
                "Network error occurred",
                retryable=True,
            )

        if isinstance(error, httpx.HTTPStatusError):
            return self._classify_status(error.response.status_code, error.response.text)

        if isinstance(error, ModelError):
            prediction = getattr(error, "prediction", None)
            detail = getattr(prediction, "error", None) or str(error)
            return self._result(
                self.ERROR_PROVIDER_RUN_FAILED,
                f"Generation run failed: {detail}",
                retryable=True,
            )

        if isinstance(error, ReplicateError):
            status = getattr(error, "status", None)
            detail = getattr(error, "detail", None) or str(error)
            if status is not None:
                return self._classify_status(status, detail)
            return self._result(self.ERROR_PROVIDER_UNAVAILABLE, detail, retryable=True)

        if isinstance(error, ProviderError):
            if error.status_code is not None:
                return self._classify_status(error.status_code, error.message)
            return self._result(
                self.ERROR_PROVIDER_UNAVAILABLE,
                error.message,
                retryable=error.retryable,
            )

        # FFmpeg errors
        if "FFmpegError" in type(error).__name__:
            return self._result(
                getattr(error, "code", self.ERROR_FFMPEG_FAILED),
                getattr(error, "message", str(error)),
                retryable=False,
            )

        # Validation errors
        if isinstance(error, (PreconditionError, ValueError)):
            return self._result(self.ERROR_VALIDATION_FAILED, str(error), retryable=False)

        # Default - unknown error
        return self._result(
            self.ERROR_UNKNOWN,
            f"An unexpected error occurred: {str(error)}",
            retryable=False,
        )

    def _classify_status(self, status: int, detail: Optional[str]) -> Dict[str, Any]:
        if status in (401, 403):
            return self._result(
                self.ERROR_PROVIDER_AUTH,
                "Authentication failed. Please check API credentials",
                retryable=False,
            )

        if status == 429:
            return self._result(
                self.ERROR_PROVIDER_RATE_LIMIT,
                "Rate limit exceeded for the generation service",
                retryable=True,
            )

        if 400 <= status < 500:
            # Client error - non-retryable
            return self._result(
                self.ERROR_PROVIDER_INVALID_PARAM,
                f"Invalid request parameters: {detail}",
                retryable=False,
            )

        # Server error - retryable
        return self._result(
            self.ERROR_PROVIDER_UNAVAILABLE,
            "Generation service temporarily unavailable",
            retryable=True,
        )

    @staticmethod
    def _result(code: str, message: str, retryable: bool) -> Dict[str, Any]:
        return {
            "code": code,
            "message": message,
            "classification": "retryable" if retryable else "non_retryable",
            "retryable": retryable,
        }
