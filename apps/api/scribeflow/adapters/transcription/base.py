"""Speech-to-text collaborator interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


class PipelineTransientError(Exception):
    """Temporary collaborator failure; the attempt may be retried later."""


class PipelineFatalError(Exception):
    """The collaborator rejected the job; retrying cannot help."""


class PipelineState(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class PipelineResult:
    state: PipelineState
    transcript: str | None = None
    error: str | None = None


class TranscriptionPipeline(ABC):
    """Provider-neutral automated transcription interface."""

    @abstractmethod
    def submit(self, *, file_reference: str, language: str, diarization: bool = False) -> str:
        """Start transcription and return the provider's job id."""

    @abstractmethod
    def poll(self, external_job_id: str) -> PipelineResult:
        """Report provider job state; the transcript is set once completed."""


__all__ = [
    "PipelineFatalError",
    "PipelineResult",
    "PipelineState",
    "PipelineTransientError",
    "TranscriptionPipeline",
]
