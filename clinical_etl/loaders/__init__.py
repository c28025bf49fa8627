"""Study-specific loaders built on the generic DatabaseLoader."""

from .sleep_stage_loader import SleepStageConfig, SleepStageLoader

__all__ = ['SleepStageConfig', 'SleepStageLoader']
