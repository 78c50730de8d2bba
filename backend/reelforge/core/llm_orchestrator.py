"""
LLM Orchestrator - LangChain chain turning prompts into scene blurbs
"""

import time
from typing import Any, List, Optional
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_core.output_parsers import PydanticOutputParser
from pydantic import BaseModel, Field

from reelforge.config.constants import MAX_SCENES, MIN_SCENES, STORYLINE_OPTIONS
from reelforge.config.settings import settings
from reelforge.services.observability import logger


class SceneDraft(BaseModel):
    """One scene of the storyboard"""

    title: str = Field(description="Short scene title (2-5 words)")
    blurb: str = Field(description="One or two sentences describing what the camera sees")


class Storyboard(BaseModel):
    """Structured output of the story chain"""

    storyline: str = Field(description="Two or three sentence overview of the ad")
    scenes: List[SceneDraft] = Field(description="Ordered scenes of the ad")


class StorylineOption(BaseModel):
    """One ad concept offered to the user"""

    title: str = Field(description="Compelling one-line title")
    overview: str = Field(description="Two or three sentence overview of the concept")
    scenes: List[str] = Field(description="Three to five short scene descriptions")

    def as_text(self) -> str:
        """Storyline text stored once the option is chosen"""
        lines = "\n".join(f"- {scene}" for scene in self.scenes)
        return f"{self.title}\n\n{self.overview}\n\nScenes:\n{lines}"


class StorylineSet(BaseModel):
    storylines: List[StorylineOption] = Field(description="Distinct ad concepts")


class StoryWriter:
    """
    Writes the storyline and scene blurbs for a project
    """

    def __init__(self, llm: Optional[Any] = None):
        """Initialize story writer using an OpenAI-compatible endpoint."""
        self.llm = llm
        self.parser = PydanticOutputParser(pydantic_object=Storyboard)
        self.options_parser = PydanticOutputParser(pydantic_object=StorylineSet)

    def _ensure_llm(self) -> None:
        if self.llm is None:
            from langchain_openai import ChatOpenAI
            self.llm = ChatOpenAI(
                model=settings.story_model,
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
                temperature=0.8,
            )

    def write_storyboard(
        self,
        product_prompt: str,
        mood_prompt: Optional[str] = None,
        storyline: Optional[str] = None,
    ) -> Storyboard:
        """
        Generate an ordered storyboard

        Args:
            product_prompt: What is being advertised
            mood_prompt: Desired mood
            storyline: Storyline chosen by the user, if any

        Returns:
            Storyboard with MIN_SCENES..MAX_SCENES scenes

        Raises:
            ValueError: If the model output has too few scenes
        """
        start_time = time.time()

        prompt = f"""Write a short video ad as an ordered list of scenes.

Product: {product_prompt}
Mood: {mood_prompt or "not specified"}
{f"Storyline to follow: {storyline}" if storyline else "Invent a storyline that fits the product and mood."}

Requirements:
- Between {MIN_SCENES} and {MAX_SCENES} scenes, each roughly 5 seconds long.
- Each blurb describes one visual moment that a single still image can anchor.
- No on-screen text, no dialogue.

{self.parser.get_format_instructions()}"""

        self._ensure_llm()
        messages = [
            SystemMessage(content="You are an expert ad creative director."),
            HumanMessage(content=prompt),
        ]

        response = self.llm.invoke(messages)
        storyboard = self.parser.parse(response.content)

        if len(storyboard.scenes) < MIN_SCENES:
            raise ValueError(
                f"Story model returned {len(storyboard.scenes)} scenes; at least {MIN_SCENES} required"
            )
        storyboard.scenes = storyboard.scenes[:MAX_SCENES]
        if storyline:
            storyboard.storyline = storyline

        logger.info(
            "storyboard_written",
            scene_count=len(storyboard.scenes),
            duration_s=round(time.time() - start_time, 3),
        )
        return storyboard

    def write_storylines(
        self,
        product_prompt: str,
        mood_prompt: Optional[str] = None,
        liked_moodboard_count: int = 0,
    ) -> List[StorylineOption]:
        """
        Propose distinct storyline options to choose from

        Args:
            product_prompt: What is being advertised
            mood_prompt: Desired mood
            liked_moodboard_count: Number of moodboards the user liked

        Returns:
            At most STORYLINE_OPTIONS options

        Raises:
            ValueError: If the model output has no options
        """
        start_time = time.time()

        style_notes = ""
        if liked_moodboard_count:
            style_notes = (
                f"\nStyle notes: the user liked {liked_moodboard_count} moodboard(s) reflecting their "
                "preferred visual style; let that style inform the concepts.\n"
            )

        prompt = f"""Propose {STORYLINE_OPTIONS} distinct 15-30 second ad concepts.

Product: {product_prompt}
Mood: {mood_prompt or "not specified"}
{style_notes}
For each concept give a compelling one-line title, a two or three sentence overview
and three to five short scenes that would appear in the ad.

{self.options_parser.get_format_instructions()}"""

        self._ensure_llm()
        messages = [
            SystemMessage(content="You are an expert ad creative director."),
            HumanMessage(content=prompt),
        ]

        response = self.llm.invoke(messages)
        options = self.options_parser.parse(response.content).storylines
        if not options:
            raise ValueError("Story model returned no storyline options")

        logger.info(
            "storylines_written",
            option_count=len(options),
            duration_s=round(time.time() - start_time, 3),
        )
        return options[:STORYLINE_OPTIONS]
