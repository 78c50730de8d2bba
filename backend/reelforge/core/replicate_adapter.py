"""
Replicate Adapter - Image-to-video predictions with webhook delivery
"""

import asyncio
from typing import Any, Dict, Optional

import replicate
from replicate.exceptions import ReplicateError

from reelforge.config.constants import CLIP_ASPECT_RATIO, WEBHOOK_EVENTS_FILTER
from reelforge.config.settings import settings
from reelforge.core.provider import (
    GenerationProvider,
    ProviderError,
    ProviderSnapshot,
    ProviderState,
    VideoRequest,
    normalize_output,
    parse_state,
    parse_timestamp,
)
from reelforge.services.observability import logger


def snapshot_from_prediction(prediction: Any) -> ProviderSnapshot:
    """
    Build a ProviderSnapshot from a replicate Prediction or its JSON body

    Raises:
        ValueError: If the payload carries no prediction id
    """
    data = prediction if isinstance(prediction, dict) else _prediction_fields(prediction)

    run_ref = data.get("id")
    if not run_ref or not isinstance(run_ref, str):
        raise ValueError("Prediction payload is missing 'id'")

    metrics = data.get("metrics") or {}
    predict_time = metrics.get("predict_time") if isinstance(metrics, dict) else None

    error = data.get("error")
    if error is not None and not isinstance(error, str):
        error = str(error)

    return ProviderSnapshot(
        run_ref=run_ref,
        state=parse_state(data.get("status")),
        output=normalize_output(data.get("output")),
        error=error,
        input=data.get("input") or {},
        started_at=parse_timestamp(data.get("started_at")),
        completed_at=parse_timestamp(data.get("completed_at")),
        predict_time_s=float(predict_time) if isinstance(predict_time, (int, float)) else None,
    )


def parse_replicate_webhook(payload: Dict[str, Any]) -> ProviderSnapshot:
    """Webhook bodies have the same shape as a prediction"""
    if not isinstance(payload, dict):
        raise ValueError("Webhook payload must be a JSON object")
    return snapshot_from_prediction(payload)


def _prediction_fields(prediction: Any) -> Dict[str, Any]:
    return {
        "id": getattr(prediction, "id", None),
        "status": getattr(prediction, "status", None),
        "input": getattr(prediction, "input", None),
        "output": getattr(prediction, "output", None),
        "error": getattr(prediction, "error", None),
        "started_at": getattr(prediction, "started_at", None),
        "completed_at": getattr(prediction, "completed_at", None),
        "metrics": getattr(prediction, "metrics", None),
    }


class ReplicateProvider(GenerationProvider):
    """
    Replicate-backed provider

    Video runs are created as background predictions that call back to the
    webhook route; poll() reads the same prediction for the polling path.
    """

    def __init__(
        self,
        client: Optional[replicate.Client] = None,
        video_model: Optional[str] = None,
        image_model: Optional[str] = None,
        webhook_url: Optional[str] = None,
    ):
        if client is None:
            if not settings.replicate_api_token:
                raise ValueError(
                    "Replicate API token is required. Set REPLICATE_API_TOKEN."
                )
            client = replicate.Client(api_token=settings.replicate_api_token)
        self.client = client
        self.video_model = video_model or settings.replicate_video_model
        self.image_model = image_model or settings.replicate_image_model
        self.webhook_url = settings.webhook_url if webhook_url is None else webhook_url
        self.logger = logger.bind(service="replicate_provider")

    def _create_kwargs(self, model_id: str, input_params: Dict[str, Any]) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"input": input_params}
        if ":" in model_id:
            kwargs["version"] = model_id.split(":", 1)[1]
        else:
            kwargs["model"] = model_id
        if self.webhook_url:
            kwargs["webhook"] = self.webhook_url
            kwargs["webhook_events_filter"] = list(WEBHOOK_EVENTS_FILTER)
        return kwargs

    async def submit_video(self, request: VideoRequest) -> str:
        """
        Create a background image-to-video prediction

        Returns:
            Prediction id (the run reference)

        Raises:
            ProviderError: If the prediction could not be created
        """
        input_params = {
            "image": request.image_url,
            "prompt": request.prompt,
            "duration": request.duration_s,
            "aspect_ratio": CLIP_ASPECT_RATIO,
        }
        self.logger.info(
            "creating_prediction",
            model_id=self.video_model,
            scene_id=request.scene_id,
            webhook=bool(self.webhook_url),
        )

        try:
            prediction = await asyncio.to_thread(
                self.client.predictions.create,
                **self._create_kwargs(self.video_model, input_params),
            )
        except ReplicateError:
            raise
        except Exception as e:
            self.logger.error(
                "prediction_creation_failed",
                model_id=self.video_model,
                error=str(e),
            )
            raise ProviderError(f"Failed to create prediction: {e}") from e

        if not getattr(prediction, "id", None):
            raise ProviderError("Provider returned a prediction without an id", retryable=True)

        self.logger.info(
            "prediction_created",
            prediction_id=prediction.id,
            status=prediction.status,
        )
        return prediction.id

    async def poll(self, run_ref: str) -> ProviderSnapshot:
        prediction = await asyncio.to_thread(self.client.predictions.get, run_ref)
        snapshot = snapshot_from_prediction(prediction)
        self.logger.debug(
            "prediction_polled",
            prediction_id=run_ref,
            state=snapshot.state.value,
        )
        return snapshot

    async def run_image(self, prompt: str) -> ProviderSnapshot:
        """
        Generate a single 16:9 image and wait for it

        Raises:
            ProviderError: If no image came back
        """
        input_params = {
            "prompt": prompt,
            "num_outputs": 1,
            "aspect_ratio": CLIP_ASPECT_RATIO,
        }
        self.logger.info("running_image_model", model_id=self.image_model)

        kwargs = self._create_kwargs(self.image_model, input_params)
        kwargs.pop("webhook", None)
        kwargs.pop("webhook_events_filter", None)
        prediction = await asyncio.to_thread(self.client.predictions.create, **kwargs)
        await asyncio.to_thread(prediction.wait)

        snapshot = snapshot_from_prediction(prediction)
        if snapshot.state != ProviderState.SUCCEEDED or not snapshot.output.urls:
            raise ProviderError(
                f"Image generation failed: {snapshot.error or snapshot.state.value}",
                retryable=True,
            )
        return snapshot
