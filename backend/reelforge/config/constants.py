"""
Application Constants Configuration
"""

from typing import Dict, List


# Job lifecycle (local status, distinct from the provider's own states)
ACTIVE_JOB_STATUSES: List[str] = ["queued", "running"]
TERMINAL_JOB_STATUSES: List[str] = ["success", "error"]

# Failure origins used to pick the retry cap for a job chain
FAILURE_SOURCE_SUBMIT: str = "submit"
FAILURE_SOURCE_PROVIDER: str = "provider"

# Scene constraints
MIN_SCENES: int = 3
MAX_SCENES: int = 6

# Inspiration step
MOODBOARD_COUNT: int = 8
MOODBOARD_IMAGES: int = 4
MOODBOARD_VARIATIONS: List[str] = [
    "dynamic angle, vibrant colors",
    "close-up detail, dramatic lighting",
    "wide shot, atmospheric",
    "product focus, clean composition",
    "lifestyle context, natural lighting",
    "abstract interpretation, artistic",
    "urban setting, modern aesthetic",
    "minimalist style, elegant",
    "action-oriented, energetic",
    "contemplative mood, soft tones",
]
STORYLINE_OPTIONS: int = 3

# Clip generation
CLIP_DURATION_S: int = 5
CLIP_ASPECT_RATIO: str = "16:9"

# Reconciliation pass bounds
MAX_RESUBMISSIONS_PER_PASS: int = 1

# An active job without a run reference is only treated as abandoned once it
# has been idle this long; until then its submission may still be in flight
UNSUBMITTED_GRACE_S: int = 120

# Webhook delivery
WEBHOOK_EVENTS_FILTER: List[str] = ["completed"]
WEBHOOK_ID_HEADER: str = "webhook-id"

# Session cookie
SESSION_COOKIE_NAME: str = "session_token"
SESSION_COOKIE_MAX_AGE_S: int = 60 * 60 * 24 * 365

# FFmpeg composition
FFMPEG_VIDEO_CODEC: str = "libx264"
FFMPEG_AUDIO_CODEC: str = "aac"
FFMPEG_AUDIO_BITRATE: str = "192k"
FFMPEG_PRESET: str = "medium"
FFMPEG_CRF: int = 23
FFMPEG_OUTPUT_WIDTH: int = 1920
FFMPEG_OUTPUT_HEIGHT: int = 1080
FFMPEG_OUTPUT_FPS: int = 30
COMPOSE_TIMEOUT_S: int = 600

# Music catalog (static for now; tagged by mood)
MUSIC_TRACKS: List[Dict[str, str]] = [
    {
        "id": "upbeat-1",
        "name": "Energetic Upbeat",
        "url": "https://www.soundhelix.com/examples/mp3/SoundHelix-Song-1.mp3",
        "mood_tag": "upbeat",
    },
    {
        "id": "ambient-1",
        "name": "Calm Ambient",
        "url": "https://www.soundhelix.com/examples/mp3/SoundHelix-Song-2.mp3",
        "mood_tag": "ambient",
    },
    {
        "id": "dramatic-1",
        "name": "Dramatic Cinematic",
        "url": "https://www.soundhelix.com/examples/mp3/SoundHelix-Song-3.mp3",
        "mood_tag": "dramatic",
    },
]

# Mood keywords, checked in order; anything else maps to "ambient"
MOOD_KEYWORDS: Dict[str, List[str]] = {
    "upbeat": ["exciting", "energetic", "upbeat", "intense"],
    "dramatic": ["dramatic", "mysterious", "epic"],
}
DEFAULT_MOOD_TAG: str = "ambient"
MAX_MUSIC_OPTIONS: int = 3
