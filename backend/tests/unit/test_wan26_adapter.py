"""
Unit Tests for the DashScope wan2.6 adapter
"""

from http import HTTPStatus
from unittest.mock import Mock, patch

import pytest

from reelforge.core.provider import ProviderError, ProviderState, VideoRequest
from reelforge.core.wan26_adapter import DashScopeProvider


@pytest.fixture
def provider():
    return DashScopeProvider(api_key="test-dashscope-key", model="wan2.6-i2v", image_model="wanx2.1-t2i-turbo")


@pytest.fixture
def request_payload():
    return VideoRequest(
        scene_id="scene-1",
        prompt="Slow push-in on the bottle",
        image_url="https://cdn.example/static/images/p/scene-1.png",
        duration_s=5,
    )


def _response(status_code=HTTPStatus.OK, output=None, code=None, message=None):
    return Mock(status_code=status_code, output=output, code=code, message=message)


async def test_submit_video_returns_task_id(provider, request_payload):
    with patch("reelforge.core.wan26_adapter.VideoSynthesis") as synthesis:
        synthesis.async_call.return_value = _response(output={"task_id": "task-123"})

        task_id = await provider.submit_video(request_payload)

    assert task_id == "task-123"
    kwargs = synthesis.async_call.call_args.kwargs
    assert kwargs["img_url"] == request_payload.image_url
    assert kwargs["model"] == "wan2.6-i2v"
    assert kwargs["duration"] == 5


async def test_submit_video_rejected(provider, request_payload):
    with patch("reelforge.core.wan26_adapter.VideoSynthesis") as synthesis:
        synthesis.async_call.return_value = _response(
            status_code=HTTPStatus.BAD_REQUEST,
            code="InvalidParameter",
            message="img_url is not reachable",
        )

        with pytest.raises(ProviderError) as exc_info:
            await provider.submit_video(request_payload)

    assert exc_info.value.status_code == 400
    assert "InvalidParameter" in exc_info.value.message


async def test_poll_succeeded(provider):
    with patch("reelforge.core.wan26_adapter.VideoSynthesis") as synthesis:
        synthesis.fetch.return_value = _response(
            output={"task_status": "SUCCEEDED", "video_url": "https://dashscope.example/v.mp4"}
        )

        snapshot = await provider.poll("task-123")

    assert snapshot.run_ref == "task-123"
    assert snapshot.state == ProviderState.SUCCEEDED
    assert snapshot.output.first_url == "https://dashscope.example/v.mp4"


async def test_poll_failed_collects_error_details(provider):
    with patch("reelforge.core.wan26_adapter.VideoSynthesis") as synthesis:
        synthesis.fetch.return_value = _response(
            output={"task_status": "FAILED", "code": "DataInspectionFailed", "message": "rejected"}
        )

        snapshot = await provider.poll("task-123")

    assert snapshot.state == ProviderState.FAILED
    assert "DataInspectionFailed" in snapshot.error


async def test_poll_success_without_url_is_failure(provider):
    with patch("reelforge.core.wan26_adapter.VideoSynthesis") as synthesis:
        synthesis.fetch.return_value = _response(output={"task_status": "SUCCEEDED"})

        snapshot = await provider.poll("task-123")

    assert snapshot.state == ProviderState.FAILED
    assert snapshot.output.first_url is None


async def test_poll_running(provider):
    with patch("reelforge.core.wan26_adapter.VideoSynthesis") as synthesis:
        synthesis.fetch.return_value = _response(output={"task_status": "RUNNING"})

        snapshot = await provider.poll("task-123")

    assert snapshot.state == ProviderState.RUNNING
    assert snapshot.error is None


async def test_run_image(provider):
    with patch("reelforge.core.wan26_adapter.ImageSynthesis") as synthesis:
        synthesis.call.return_value = _response(
            output={"task_id": "img-task", "results": [{"url": "https://dashscope.example/i.png"}]}
        )

        snapshot = await provider.run_image("a bottle on a ledge")

    assert snapshot.state == ProviderState.SUCCEEDED
    assert snapshot.output.first_url == "https://dashscope.example/i.png"
    assert synthesis.call.call_args.kwargs["size"] == "1280*720"
