"""
Unit Tests for the Replicate adapter
"""

from datetime import datetime
from unittest.mock import Mock

import pytest

from reelforge.core.provider import OutputKind, ProviderError, ProviderState, VideoRequest
from reelforge.core.replicate_adapter import ReplicateProvider, parse_replicate_webhook
from fixtures.sample_data import replicate_prediction


WEBHOOK_URL = "https://reelforge.example.com/v1/webhooks/replicate"


def _prediction(**fields):
    defaults = {
        "id": "pred-1",
        "status": "starting",
        "input": {},
        "output": None,
        "error": None,
        "started_at": None,
        "completed_at": None,
        "metrics": None,
    }
    defaults.update(fields)
    return Mock(**defaults)


@pytest.fixture
def client():
    client = Mock()
    client.predictions.create = Mock(return_value=_prediction())
    return client


@pytest.fixture
def provider(client):
    return ReplicateProvider(
        client=client,
        video_model="wan-video/wan-2.2-i2v-fast",
        image_model="stability-ai/sdxl:abc123",
        webhook_url=WEBHOOK_URL,
    )


class TestWebhookParsing:
    def test_succeeded_prediction(self):
        payload = replicate_prediction(
            "pred-9",
            input_params={"image": "https://cdn.example/static/images/p/s.png"},
        )

        snapshot = parse_replicate_webhook(payload)

        assert snapshot.run_ref == "pred-9"
        assert snapshot.state == ProviderState.SUCCEEDED
        assert snapshot.output.first_url == "https://replicate.delivery/pbxt/clip.mp4"
        assert snapshot.input["image"].endswith("/s.png")
        assert snapshot.started_at == datetime(2024, 5, 1, 10, 0, 2)
        assert snapshot.completed_at == datetime(2024, 5, 1, 10, 0, 47, 500000)
        assert snapshot.predict_time_s == 45.5

    def test_failed_prediction(self):
        snapshot = parse_replicate_webhook(
            replicate_prediction("pred-2", status="failed", output=None, error="CUDA out of memory")
        )

        assert snapshot.state == ProviderState.FAILED
        assert snapshot.error == "CUDA out of memory"
        assert snapshot.output.kind == OutputKind.NONE

    def test_missing_id_is_rejected(self):
        payload = replicate_prediction("pred-3")
        del payload["id"]

        with pytest.raises(ValueError):
            parse_replicate_webhook(payload)

    def test_non_object_is_rejected(self):
        with pytest.raises(ValueError):
            parse_replicate_webhook(["not", "a", "prediction"])


class TestReplicateProvider:
    async def test_submit_video_uses_webhook(self, provider, client):
        run_ref = await provider.submit_video(
            VideoRequest(scene_id="s1", prompt="hero shot", image_url="https://cdn.example/s1.png")
        )

        assert run_ref == "pred-1"
        kwargs = client.predictions.create.call_args.kwargs
        assert kwargs["model"] == "wan-video/wan-2.2-i2v-fast"
        assert kwargs["input"]["image"] == "https://cdn.example/s1.png"
        assert kwargs["input"]["duration"] == 5
        assert kwargs["webhook"] == WEBHOOK_URL
        assert kwargs["webhook_events_filter"] == ["completed"]

    async def test_submit_video_wraps_unexpected_errors(self, provider, client):
        client.predictions.create.side_effect = ConnectionError("reset by peer")

        with pytest.raises(ProviderError):
            await provider.submit_video(
                VideoRequest(scene_id="s1", prompt="hero shot", image_url="https://cdn.example/s1.png")
            )

    async def test_poll_reads_prediction(self, provider, client):
        client.predictions.get = Mock(
            return_value=_prediction(status="processing", input={"image": "x"})
        )

        snapshot = await provider.poll("pred-1")

        client.predictions.get.assert_called_once_with("pred-1")
        assert snapshot.state == ProviderState.RUNNING
        assert snapshot.output.first_url is None

    async def test_run_image_pins_version_and_skips_webhook(self, provider, client):
        prediction = _prediction(status="succeeded", output=["https://replicate.delivery/img.png"])
        client.predictions.create = Mock(return_value=prediction)

        snapshot = await provider.run_image("a bottle on a ledge")

        kwargs = client.predictions.create.call_args.kwargs
        assert kwargs["version"] == "abc123"
        assert "webhook" not in kwargs
        prediction.wait.assert_called_once()
        assert snapshot.output.first_url == "https://replicate.delivery/img.png"

    async def test_run_image_without_output_fails(self, provider, client):
        client.predictions.create = Mock(return_value=_prediction(status="failed", error="nsfw"))

        with pytest.raises(ProviderError):
            await provider.run_image("a bottle on a ledge")
