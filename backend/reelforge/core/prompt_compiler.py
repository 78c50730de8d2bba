"""
Prompt Compiler - Jinja2-based scene video and image prompts
"""

from typing import Any, Dict, Optional
from jinja2 import Environment, BaseLoader

from reelforge.config.constants import CLIP_DURATION_S


class PromptCompiler:
    """
    Compile per-scene prompts for the generation provider
    """

    VIDEO_TEMPLATE = (
        "{{ blurb }}\n\n"
        "Product: {{ product_prompt }}"
        "{% if mood_prompt %}\n\nMood: {{ mood_prompt }}{% endif %}\n\n"
        "{{ duration_s }} seconds, smooth camera motion, product hero shot, cinematic, ad style, "
        "professional commercial video, high production value, 16:9 aspect ratio"
    )

    IMAGE_TEMPLATE = (
        "{{ blurb }}, Cinematic, realistic commercial, 35mm lens, soft depth of field, "
        "professional lighting, high production value, 16:9 frame"
    )

    MOODBOARD_TEMPLATE = (
        "{{ product_prompt }}{% if mood_prompt %}, {{ mood_prompt }} mood{% endif %}, {{ variation }}"
    )

    def __init__(self):
        """Initialize prompt compiler"""
        self.jinja_env = Environment(loader=BaseLoader())
        self._video = self.jinja_env.from_string(self.VIDEO_TEMPLATE)
        self._image = self.jinja_env.from_string(self.IMAGE_TEMPLATE)
        self._moodboard = self.jinja_env.from_string(self.MOODBOARD_TEMPLATE)

    def compile_video_prompt(
        self,
        scene: Dict[str, Any],
        product_prompt: str,
        mood_prompt: Optional[str] = None,
        duration_s: int = CLIP_DURATION_S,
    ) -> str:
        """
        Compile the image-to-video prompt for one scene

        Args:
            scene: Embedded scene dict (needs "blurb")
            product_prompt: Project product description
            mood_prompt: Optional mood description
            duration_s: Clip length hint

        Returns:
            Prompt text
        """
        return self._video.render(
            blurb=scene["blurb"].strip(),
            product_prompt=product_prompt.strip(),
            mood_prompt=(mood_prompt or "").strip(),
            duration_s=duration_s,
        )

    def compile_image_prompt(self, scene: Dict[str, Any]) -> str:
        return self._image.render(blurb=scene["blurb"].strip())

    def compile_moodboard_prompt(
        self,
        product_prompt: str,
        mood_prompt: Optional[str],
        variation: str,
    ) -> str:
        """Prompt for one moodboard: the product and mood seen through a visual variation"""
        return self._moodboard.render(
            product_prompt=product_prompt.strip(),
            mood_prompt=(mood_prompt or "").strip(),
            variation=variation,
        )
