"""
Test Fixtures Package
"""

from .sample_data import (
    SAMPLE_BLURBS,
    SAMPLE_MOOD_PROMPT,
    SAMPLE_PRODUCT_PROMPT,
    SAMPLE_STORYBOARD_JSON,
    replicate_prediction,
)

__all__ = [
    'SAMPLE_BLURBS',
    'SAMPLE_MOOD_PROMPT',
    'SAMPLE_PRODUCT_PROMPT',
    'SAMPLE_STORYBOARD_JSON',
    'replicate_prediction',
]
