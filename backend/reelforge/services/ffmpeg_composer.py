"""
FFmpeg Composer - Concatenate scene clips and lay a music track under them
"""

import asyncio
import os
import shutil
import subprocess
import tempfile
import time
from typing import List, Optional

import httpx

from reelforge.config.settings import settings
from reelforge.config.constants import (
    COMPOSE_TIMEOUT_S,
    FFMPEG_AUDIO_BITRATE,
    FFMPEG_AUDIO_CODEC,
    FFMPEG_CRF,
    FFMPEG_OUTPUT_FPS,
    FFMPEG_OUTPUT_HEIGHT,
    FFMPEG_OUTPUT_WIDTH,
    FFMPEG_PRESET,
    FFMPEG_VIDEO_CODEC,
)
from reelforge.services.asset_storage import AssetStorage
from reelforge.services.observability import logger


class FFmpegError(Exception):
    """FFmpeg processing error"""

    def __init__(self, message: str, code: str, details: Optional[str] = None):
        self.message = message
        self.code = code
        self.details = details
        super().__init__(self.message)


class FFmpegCompositor:
    """
    Builds the final video: every clip scaled/padded to 1080p30, concatenated
    in scene order, with the music as the only audio stream
    """

    # Error codes
    ERROR_FFMPEG_NOT_FOUND = "FFMPEG_NOT_FOUND"
    ERROR_NO_CLIPS = "NO_CLIPS"
    ERROR_DOWNLOAD_FAILED = "DOWNLOAD_FAILED"
    ERROR_COMPOSE_FAILED = "FFMPEG_FAILED"
    ERROR_TIMEOUT = "FFMPEG_TIMEOUT"

    def __init__(self, storage: AssetStorage, ffmpeg_path: Optional[str] = None):
        """Initialize FFmpeg compositor"""
        self.storage = storage
        self.ffmpeg_path = ffmpeg_path or settings.ffmpeg_path

    def _is_ffmpeg_available(self) -> bool:
        if os.path.isabs(self.ffmpeg_path) or os.sep in self.ffmpeg_path:
            return os.path.exists(self.ffmpeg_path) and os.access(self.ffmpeg_path, os.X_OK)
        return shutil.which(self.ffmpeg_path) is not None

    def build_command(
        self,
        clip_paths: List[str],
        music_path: str,
        output_path: str,
    ) -> List[str]:
        """
        Build the single ffmpeg invocation

        Args:
            clip_paths: Local clip files in final order
            music_path: Local music file (last input)
            output_path: Output mp4 path

        Returns:
            argv list
        """
        width, height, fps = FFMPEG_OUTPUT_WIDTH, FFMPEG_OUTPUT_HEIGHT, FFMPEG_OUTPUT_FPS

        cmd = [self.ffmpeg_path, "-y"]
        for path in clip_paths:
            cmd += ["-i", path]
        cmd += ["-i", music_path]

        filters = [
            f"[{index}:v]scale={width}:{height}:force_original_aspect_ratio=decrease,"
            f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2,setsar=1,fps={fps}[v{index}]"
            for index in range(len(clip_paths))
        ]
        concat_inputs = "".join(f"[v{index}]" for index in range(len(clip_paths)))
        filters.append(f"{concat_inputs}concat=n={len(clip_paths)}:v=1:a=0[outv]")

        cmd += [
            "-filter_complex", ";".join(filters),
            "-map", "[outv]",
            "-map", f"{len(clip_paths)}:a",  # Music is the last input
            "-c:v", FFMPEG_VIDEO_CODEC,
            "-preset", FFMPEG_PRESET,
            "-crf", str(FFMPEG_CRF),
            "-c:a", FFMPEG_AUDIO_CODEC,
            "-b:a", FFMPEG_AUDIO_BITRATE,
            "-shortest",
            "-movflags", "+faststart",
            output_path,
        ]
        return cmd

    async def _download(self, url: str, target_path: str) -> None:
        try:
            async with self.storage.client.stream("GET", url) as response:
                response.raise_for_status()
                with open(target_path, "wb") as f:
                    async for chunk in response.aiter_bytes(chunk_size=8192):
                        f.write(chunk)
        except httpx.HTTPError as e:
            raise FFmpegError(
                f"Failed to download {url}: {e}",
                self.ERROR_DOWNLOAD_FAILED,
                details=str(e),
            ) from e

    def _run(self, cmd: List[str]) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=COMPOSE_TIMEOUT_S,
            )
        except subprocess.TimeoutExpired as e:
            raise FFmpegError(
                f"FFmpeg did not finish within {COMPOSE_TIMEOUT_S}s",
                self.ERROR_TIMEOUT,
            ) from e

    async def compose(
        self,
        ordered_clip_urls: List[str],
        music_url: str,
        project_id: str,
    ) -> str:
        """
        Compose the final video and publish it

        Args:
            ordered_clip_urls: Clip URLs in scene order
            music_url: Music track URL
            project_id: Owning project (used for the output location)

        Returns:
            Public URL of the final video

        Raises:
            FFmpegError: If any step fails
        """
        if not ordered_clip_urls:
            raise FFmpegError("No clips to compose", self.ERROR_NO_CLIPS)

        if not self._is_ffmpeg_available():
            raise FFmpegError(
                f"FFmpeg not found: {self.ffmpeg_path}",
                self.ERROR_FFMPEG_NOT_FOUND,
            )

        work_dir = tempfile.mkdtemp(prefix=f"compose-{project_id}-")
        try:
            clip_paths = []
            for index, url in enumerate(ordered_clip_urls):
                clip_path = os.path.join(work_dir, f"clip_{index:02d}.mp4")
                await self._download(url, clip_path)
                clip_paths.append(clip_path)

            music_path = os.path.join(work_dir, "music.mp3")
            await self._download(music_url, music_path)

            output_path = os.path.join(work_dir, "final.mp4")
            cmd = self.build_command(clip_paths, music_path, output_path)

            logger.info(
                "ffmpeg_compose_start",
                project_id=project_id,
                clip_count=len(clip_paths),
            )
            result = await asyncio.to_thread(self._run, cmd)

            if result.returncode != 0:
                error_msg = result.stderr.decode("utf-8", errors="ignore")
                logger.error(
                    "ffmpeg_compose_failed",
                    project_id=project_id,
                    returncode=result.returncode,
                    stderr_tail=error_msg[-2000:],
                )
                raise FFmpegError(
                    f"FFmpeg exited with code {result.returncode}",
                    self.ERROR_COMPOSE_FAILED,
                    details=error_msg,
                )

            hint = f"final/{project_id}/final-{int(time.time() * 1000)}.mp4"
            public_url = self.storage.store_file(output_path, hint)

            logger.info(
                "ffmpeg_compose_complete",
                project_id=project_id,
                url=public_url,
            )
            return public_url

        finally:
            shutil.rmtree(work_dir, ignore_errors=True)
