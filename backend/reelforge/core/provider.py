"""
Generation Provider Contract - Normalized types shared by all provider adapters
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ProviderError(Exception):
    """Provider rejected or could not accept a request"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retryable: bool = True,
    ):
        self.message = message
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(message)


class ProviderState(str, Enum):
    """Run states reported by a generation provider"""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (ProviderState.SUCCEEDED, ProviderState.FAILED, ProviderState.CANCELED)


class OutputKind(str, Enum):
    SINGLE_URL = "single-url"
    MULTI_URL = "multi-url"
    NONE = "none"


class ProviderOutput(BaseModel):
    """Tagged output reference(s) of a finished run"""

    kind: OutputKind = OutputKind.NONE
    urls: List[str] = Field(default_factory=list)

    @property
    def first_url(self) -> Optional[str]:
        return self.urls[0] if self.urls else None


class ProviderSnapshot(BaseModel):
    """Point-in-time view of one provider run, from a webhook or a poll"""

    run_ref: str
    state: ProviderState
    output: ProviderOutput = Field(default_factory=ProviderOutput)
    error: Optional[str] = None
    input: Dict[str, Any] = Field(default_factory=dict)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    predict_time_s: Optional[float] = None


class VideoRequest(BaseModel):
    """Image-to-video request for one scene"""

    scene_id: str
    prompt: str
    image_url: str
    duration_s: int = 5


def normalize_output(raw: Any) -> ProviderOutput:
    """
    Collapse the shapes providers return (string, list, dict, file object)
    into a ProviderOutput.
    """
    urls = _collect_urls(raw)
    if not urls:
        return ProviderOutput(kind=OutputKind.NONE, urls=[])
    if len(urls) == 1:
        return ProviderOutput(kind=OutputKind.SINGLE_URL, urls=urls)
    return ProviderOutput(kind=OutputKind.MULTI_URL, urls=urls)


def _collect_urls(raw: Any) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        return [raw] if raw else []
    if isinstance(raw, (list, tuple)):
        urls: List[str] = []
        for item in raw:
            urls.extend(_collect_urls(item))
        return urls
    if isinstance(raw, dict):
        for key in ("video_url", "video", "url", "output", "urls"):
            if key in raw:
                return _collect_urls(raw[key])
        return []
    # File-like outputs (e.g. replicate FileOutput) expose the URL as .url
    url = getattr(raw, "url", None)
    if isinstance(url, str) and url:
        return [url]
    return []


def parse_state(value: Any) -> ProviderState:
    """Map provider-specific status strings onto ProviderState"""
    normalized = str(value or "").strip().lower()
    if normalized in ("succeeded", "success", "completed", "done", "finished"):
        return ProviderState.SUCCEEDED
    if normalized in ("failed", "failure", "error", "unknown"):
        return ProviderState.FAILED
    if normalized in ("canceled", "cancelled", "aborted"):
        return ProviderState.CANCELED
    if normalized in ("processing", "running", "started"):
        return ProviderState.RUNNING
    return ProviderState.PENDING


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse ISO timestamps (with trailing Z) into naive UTC datetimes"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class GenerationProvider:
    """
    Interface the reconciliation engine depends on

    Implementations submit asynchronous runs and report their state;
    everything they return is already normalized.
    """

    async def submit_video(self, request: VideoRequest) -> str:
        """Submit an image-to-video run and return its run reference"""
        raise NotImplementedError

    async def poll(self, run_ref: str) -> ProviderSnapshot:
        """Fetch the current state of a run"""
        raise NotImplementedError

    async def run_image(self, prompt: str) -> ProviderSnapshot:
        """Generate one image synchronously"""
        raise NotImplementedError
