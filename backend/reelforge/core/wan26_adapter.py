"""
Wan2.6 Adapter - DashScope image-to-video API integration
"""

import asyncio
from typing import Dict, Any, Optional, List
from http import HTTPStatus

from dashscope import ImageSynthesis, VideoSynthesis

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


class DashScopeProvider(GenerationProvider):
    """
    Adapter for DashScope wan2.6 image-to-video API
    Uses DashScope VideoSynthesis SDK

    DashScope has no callback delivery, so runs only converge through the
    reconciliation pass polling fetch().
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        image_model: Optional[str] = None,
    ):
        """Initialize wan2.6 adapter"""
        self.api_key = api_key or settings.dashscope_api_key
        self.model = model or settings.dashscope_video_model
        self.image_model = image_model or settings.dashscope_image_model

    def _format_task_error(
        self,
        task_status: str,
        rsp: Any,
        output_payload: Optional[Dict[str, Any]],
    ) -> str:
        parts: List[str] = []
        if task_status:
            parts.append(f"task_status={task_status}")

        code = getattr(rsp, "code", None)
        message = getattr(rsp, "message", None)
        if code:
            parts.append(f"code={code}")
        if message:
            parts.append(f"message={message}")

        if output_payload:
            for key in ("code", "message", "error", "error_code", "error_msg", "reason", "failed_reason"):
                value = output_payload.get(key)
                if value:
                    parts.append(f"{key}={value}")

        return "; ".join(parts) if parts else "Video synthesis failed without error details"

    @staticmethod
    def _output_field(output: Any, key: str) -> Any:
        if output is None:
            return None
        if isinstance(output, dict):
            return output.get(key)
        return getattr(output, key, None)

    async def submit_video(self, request: VideoRequest) -> str:
        """
        Submit single scene image-to-video request to DashScope

        Args:
            request: Scene video request

        Returns:
            DashScope task_id

        Raises:
            ProviderError: If API request fails
        """
        logger.info(
            "submit_video_request",
            provider="dashscope",
            scene_id=request.scene_id,
            prompt_length=len(request.prompt),
            duration=request.duration_s,
        )

        rsp = await asyncio.to_thread(
            VideoSynthesis.async_call,
            api_key=self.api_key,
            model=self.model,
            prompt=request.prompt,
            img_url=request.image_url,
            duration=request.duration_s,
        )

        if rsp.status_code == HTTPStatus.OK:
            task_id = self._output_field(rsp.output, "task_id")
            logger.info(
                "video_request_submitted",
                provider="dashscope",
                task_id=task_id,
            )
            if not task_id:
                raise ProviderError("DashScope accepted the request without a task_id")
            return task_id

        error_msg = f'Failed, status_code: {rsp.status_code}, code: {rsp.code}, message: {rsp.message}'
        logger.error(
            "video_request_failed",
            provider="dashscope",
            error=error_msg,
        )
        raise ProviderError(error_msg, status_code=int(rsp.status_code))

    async def poll(self, run_ref: str) -> ProviderSnapshot:
        """
        Fetch task status once (non-blocking, unlike VideoSynthesis.wait)

        Args:
            run_ref: DashScope task ID

        Returns:
            ProviderSnapshot with state and video URL if finished
        """
        rsp = await asyncio.to_thread(
            VideoSynthesis.fetch,
            task=run_ref,
            api_key=self.api_key,
        )

        if rsp.status_code != HTTPStatus.OK:
            error_msg = f'Failed, status_code: {rsp.status_code}, code: {rsp.code}, message: {rsp.message}'
            logger.error(
                "task_fetch_failed",
                task_id=run_ref,
                error=error_msg,
            )
            raise ProviderError(error_msg, status_code=int(rsp.status_code))

        output = rsp.output
        output_payload: Dict[str, Any] = output if isinstance(output, dict) else {}
        raw_status = self._output_field(output, "task_status")
        task_status = raw_status if isinstance(raw_status, str) else ""
        state = parse_state(task_status)

        video_url = self._output_field(output, "video_url")
        error = None
        if state in (ProviderState.FAILED, ProviderState.CANCELED):
            error = self._format_task_error(task_status, rsp, output_payload)
        elif state == ProviderState.SUCCEEDED and not video_url:
            state = ProviderState.FAILED
            error = "Video synthesis completed but no video_url returned"

        return ProviderSnapshot(
            run_ref=run_ref,
            state=state,
            output=normalize_output(video_url),
            error=error,
            started_at=parse_timestamp(
                self._output_field(output, "scheduled_time")
                or self._output_field(output, "submit_time")
            ),
            completed_at=parse_timestamp(self._output_field(output, "end_time")),
        )

    async def run_image(self, prompt: str) -> ProviderSnapshot:
        """
        Generate one 16:9 image with ImageSynthesis (blocking call)

        Raises:
            ProviderError: If no image came back
        """
        rsp = await asyncio.to_thread(
            ImageSynthesis.call,
            api_key=self.api_key,
            model=self.image_model,
            prompt=prompt,
            n=1,
            size="1280*720",
        )

        if rsp.status_code != HTTPStatus.OK:
            error_msg = f'Failed, status_code: {rsp.status_code}, code: {rsp.code}, message: {rsp.message}'
            logger.error("image_request_failed", provider="dashscope", error=error_msg)
            raise ProviderError(error_msg, status_code=int(rsp.status_code))

        results = self._output_field(rsp.output, "results") or []
        urls = [self._output_field(item, "url") for item in results]
        output = normalize_output([url for url in urls if url])
        if not output.urls:
            raise ProviderError("Image generation returned no results")

        return ProviderSnapshot(
            run_ref=self._output_field(rsp.output, "task_id") or "",
            state=ProviderState.SUCCEEDED,
            output=output,
        )
