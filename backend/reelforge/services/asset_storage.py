"""
Asset Storage Service - Republishes provider-hosted files under the static tree
"""

import os
import shutil
from pathlib import Path
from typing import Optional

import httpx

from reelforge.config.settings import settings
from reelforge.services.observability import logger


class AssetStorage:
    """
    Durable storage for generated images, clips and final videos

    Files live under static_root and are served by the API's static mount;
    destination hints are relative paths like "videos/<project>/<job>.mp4".
    """

    def __init__(
        self,
        static_root: Optional[str] = None,
        public_base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize asset storage"""
        self.static_root = static_root or settings.static_root
        self.public_base_url = (public_base_url or settings.public_base_url).rstrip("/")
        self.static_url_prefix = settings.static_url_prefix.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=300.0, follow_redirects=True)

        Path(self.static_root).mkdir(parents=True, exist_ok=True)

    def get_storage_path(self, destination_hint: str) -> str:
        """
        Absolute file path for a destination hint

        Raises:
            ValueError: If the hint escapes the static root
        """
        root = os.path.abspath(self.static_root)
        path = os.path.abspath(os.path.join(root, destination_hint.lstrip("/")))
        if not path.startswith(root + os.sep):
            raise ValueError(f"Destination outside static root: {destination_hint}")
        return path

    def get_public_url(self, destination_hint: str) -> str:
        return f"{self.public_base_url}{self.static_url_prefix}/{destination_hint.lstrip('/')}"

    async def relocate(self, source_url: str, destination_hint: str) -> str:
        """
        Download source_url and store it under destination_hint

        Args:
            source_url: Provider-hosted URL
            destination_hint: Relative path inside the static tree

        Returns:
            Public URL of the stored copy

        Raises:
            httpx.HTTPError: If download fails
        """
        target_path = self.get_storage_path(destination_hint)
        partial_path = f"{target_path}.part"

        try:
            logger.info(
                "asset_relocation_start",
                url=source_url,
                destination=destination_hint,
            )

            async with self.client.stream("GET", source_url) as response:
                response.raise_for_status()

                Path(target_path).parent.mkdir(parents=True, exist_ok=True)

                with open(partial_path, "wb") as f:
                    async for chunk in response.aiter_bytes(chunk_size=8192):
                        f.write(chunk)

            os.replace(partial_path, target_path)

            logger.info(
                "asset_relocation_complete",
                url=source_url,
                target_path=target_path,
                size_bytes=os.path.getsize(target_path),
            )

            return self.get_public_url(destination_hint)

        except Exception as e:
            if os.path.exists(partial_path):
                os.remove(partial_path)
            logger.error(
                "asset_relocation_failed",
                url=source_url,
                destination=destination_hint,
                error=str(e),
            )
            raise

    def store_file(self, local_path: str, destination_hint: str) -> str:
        """Move a local file into the static tree and return its public URL"""
        target_path = self.get_storage_path(destination_hint)
        Path(target_path).parent.mkdir(parents=True, exist_ok=True)
        shutil.move(local_path, target_path)
        return self.get_public_url(destination_hint)

    async def close(self):
        """Close HTTP client"""
        await self.client.aclose()
