"""
Provider selection from settings
"""

from reelforge.config.settings import settings
from reelforge.core.provider import GenerationProvider


def get_provider() -> GenerationProvider:
    """Build the configured generation provider"""
    if settings.video_provider == "dashscope":
        from reelforge.core.wan26_adapter import DashScopeProvider

        return DashScopeProvider()

    from reelforge.core.replicate_adapter import ReplicateProvider

    return ReplicateProvider()
