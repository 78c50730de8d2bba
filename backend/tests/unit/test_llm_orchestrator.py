"""
Unit Tests for the story writer
"""

import json
from unittest.mock import Mock

import pytest

from reelforge.core.llm_orchestrator import StorylineOption, StoryWriter
from fixtures.sample_data import SAMPLE_BLURBS, SAMPLE_STORYBOARD_JSON, SAMPLE_STORYLINES_JSON


def _llm_returning(content: str) -> Mock:
    mock = Mock()
    mock.invoke = Mock(return_value=Mock(content=content))
    return mock


def test_write_storyboard():
    llm = _llm_returning(SAMPLE_STORYBOARD_JSON)
    writer = StoryWriter(llm=llm)

    storyboard = writer.write_storyboard("Insulated bottle", "energetic")

    assert len(storyboard.scenes) == 4
    assert storyboard.scenes[0].title == "Trailhead"
    assert storyboard.storyline.startswith("A day on the trail")

    messages = llm.invoke.call_args.args[0]
    assert "Product: Insulated bottle" in messages[-1].content
    assert "Mood: energetic" in messages[-1].content


def test_chosen_storyline_is_kept():
    writer = StoryWriter(llm=_llm_returning(SAMPLE_STORYBOARD_JSON))

    storyboard = writer.write_storyboard("Insulated bottle", storyline="Sunrise to summit")

    assert storyboard.storyline == "Sunrise to summit"


def test_too_many_scenes_are_truncated():
    payload = {
        "storyline": "Everything, everywhere",
        "scenes": [{"title": f"Scene {index}", "blurb": SAMPLE_BLURBS[index % 6]} for index in range(8)],
    }
    writer = StoryWriter(llm=_llm_returning(json.dumps(payload)))

    storyboard = writer.write_storyboard("Insulated bottle")

    assert len(storyboard.scenes) == 6


def test_too_few_scenes_are_rejected():
    payload = {
        "storyline": "Short",
        "scenes": [{"title": "Only", "blurb": SAMPLE_BLURBS[0]}, {"title": "Two", "blurb": SAMPLE_BLURBS[1]}],
    }
    writer = StoryWriter(llm=_llm_returning(json.dumps(payload)))

    with pytest.raises(ValueError):
        writer.write_storyboard("Insulated bottle")


def test_write_storylines():
    llm = _llm_returning(SAMPLE_STORYLINES_JSON)
    writer = StoryWriter(llm=llm)

    options = writer.write_storylines("Insulated bottle", "energetic", liked_moodboard_count=2)

    assert [option.title for option in options] == ["Sunrise to Summit", "City Heat", "Weekend Crew"]
    assert len(options[2].scenes) == 4

    prompt = llm.invoke.call_args.args[0][-1].content
    assert "Product: Insulated bottle" in prompt
    assert "liked 2 moodboard(s)" in prompt


def test_storylines_without_liked_moodboards():
    llm = _llm_returning(SAMPLE_STORYLINES_JSON)

    StoryWriter(llm=llm).write_storylines("Insulated bottle")

    assert "Style notes" not in llm.invoke.call_args.args[0][-1].content


def test_extra_storylines_are_truncated():
    option = {"title": "Again", "overview": "Same idea.", "scenes": ["One", "Two", "Three"]}
    writer = StoryWriter(llm=_llm_returning(json.dumps({"storylines": [option] * 5})))

    assert len(writer.write_storylines("Insulated bottle")) == 3


def test_no_storylines_are_rejected():
    writer = StoryWriter(llm=_llm_returning(json.dumps({"storylines": []})))

    with pytest.raises(ValueError):
        writer.write_storylines("Insulated bottle")


def test_storyline_option_as_text():
    option = StorylineOption(title="City Heat", overview="Everything wilts.", scenes=["Platform", "Desk"])

    assert option.as_text() == "City Heat\n\nEverything wilts.\n\nScenes:\n- Platform\n- Desk"
