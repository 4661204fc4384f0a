"""Automated transcription pipeline adapters."""

from .base import (
    PipelineFatalError,
    PipelineResult,
    PipelineState,
    PipelineTransientError,
    TranscriptionPipeline,
)
from .mock_pipeline import MockTranscriptionPipeline
from .speechmatics import SpeechmaticsPipeline

__all__ = [
    "MockTranscriptionPipeline",
    "PipelineFatalError",
    "PipelineResult",
    "PipelineState",
    "PipelineTransientError",
    "SpeechmaticsPipeline",
    "TranscriptionPipeline",
]
