"""
Music catalog lookups
"""

from typing import Dict, List, Optional

from reelforge.config.constants import DEFAULT_MOOD_TAG, MAX_MUSIC_OPTIONS, MOOD_KEYWORDS, MUSIC_TRACKS


def map_mood_to_tag(mood_prompt: Optional[str]) -> str:
    """Pick a catalog mood tag from free-text mood keywords"""
    text = (mood_prompt or "").lower()
    for tag, keywords in MOOD_KEYWORDS.items():
        if any(keyword in text for keyword in keywords):
            return tag
    return DEFAULT_MOOD_TAG


def get_music_options(mood_prompt: Optional[str] = None) -> List[Dict[str, str]]:
    """
    Catalog tracks matching the project mood

    Args:
        mood_prompt: Project mood text, if any

    Returns:
        Up to MAX_MUSIC_OPTIONS track dicts (id, name, url, mood_tag); the
        whole catalog when nothing matches
    """
    tag = map_mood_to_tag(mood_prompt)
    matching = [dict(track) for track in MUSIC_TRACKS if track["mood_tag"] == tag]
    if not matching:
        matching = [dict(track) for track in MUSIC_TRACKS]
    return matching[:MAX_MUSIC_OPTIONS]


def get_music_track(track_id: Optional[str]) -> Optional[Dict[str, str]]:
    for track in MUSIC_TRACKS:
        if track["id"] == track_id:
            return dict(track)
    return None
