"""
Unit Tests for ErrorClassifier
"""

import httpx
from replicate.exceptions import ReplicateError

from reelforge.core.provider import ProviderError
from reelforge.services.error_classifier import ErrorClassifier
from reelforge.services.errors import PreconditionError
from reelforge.services.ffmpeg_composer import FFmpegError


def _http_status_error(status_code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://example.com")
    response = httpx.Response(status_code, request=request, text="error")
    return httpx.HTTPStatusError("error", request=request, response=response)


def test_classify_timeout():
    classifier = ErrorClassifier()
    error = httpx.ReadTimeout("timeout", request=httpx.Request("GET", "https://example.com"))

    result = classifier.classify(error)

    assert result["code"] == classifier.ERROR_NETWORK_TIMEOUT
    assert result["retryable"] is True


def test_classify_network_error():
    classifier = ErrorClassifier()
    error = httpx.NetworkError("network", request=httpx.Request("GET", "https://example.com"))

    result = classifier.classify(error)

    assert result["code"] == classifier.ERROR_NETWORK_ERROR
    assert result["retryable"] is True


def test_classify_http_status_errors():
    classifier = ErrorClassifier()

    result_401 = classifier.classify(_http_status_error(401))
    assert result_401["code"] == classifier.ERROR_PROVIDER_AUTH
    assert result_401["retryable"] is False

    result_429 = classifier.classify(_http_status_error(429))
    assert result_429["code"] == classifier.ERROR_PROVIDER_RATE_LIMIT
    assert result_429["retryable"] is True

    result_400 = classifier.classify(_http_status_error(400))
    assert result_400["code"] == classifier.ERROR_PROVIDER_INVALID_PARAM
    assert result_400["retryable"] is False

    result_500 = classifier.classify(_http_status_error(500))
    assert result_500["code"] == classifier.ERROR_PROVIDER_UNAVAILABLE
    assert result_500["retryable"] is True


def test_classify_provider_errors():
    classifier = ErrorClassifier()

    with_status = classifier.classify(ProviderError("forbidden", status_code=403))
    assert with_status["code"] == classifier.ERROR_PROVIDER_AUTH

    without_status = classifier.classify(ProviderError("no task id", retryable=False))
    assert without_status["code"] == classifier.ERROR_PROVIDER_UNAVAILABLE
    assert without_status["message"] == "no task id"
    assert without_status["classification"] == "non_retryable"


def test_classify_replicate_error():
    classifier = ErrorClassifier()

    result = classifier.classify(ReplicateError(status=429, detail="slow down"))

    assert result["code"] == classifier.ERROR_PROVIDER_RATE_LIMIT
    assert result["retryable"] is True


def test_classify_ffmpeg_error():
    classifier = ErrorClassifier()
    error = FFmpegError("missing", "NO_CLIPS")

    result = classifier.classify(error)

    assert result["code"] == "NO_CLIPS"
    assert result["message"] == "missing"
    assert result["retryable"] is False


def test_classify_validation_and_unknown():
    classifier = ErrorClassifier()

    assert classifier.classify(ValueError("bad"))["code"] == classifier.ERROR_VALIDATION_FAILED
    assert classifier.classify(PreconditionError("no music"))["code"] == classifier.ERROR_VALIDATION_FAILED

    unknown = classifier.classify(RuntimeError("boom"))
    assert unknown["code"] == classifier.ERROR_UNKNOWN
    assert unknown["classification"] == "non_retryable"
