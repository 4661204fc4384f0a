"""Deterministic pipeline used for local development and tests."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass

from scribeflow.adapters.transcription.base import (
    PipelineResult,
    PipelineState,
    TranscriptionPipeline,
)


@dataclass(slots=True)
class _MockJob:
    file_reference: str
    language: str
    diarization: bool
    polls: int = 0


class MockTranscriptionPipeline(TranscriptionPipeline):
    """Completes every job on its first poll unless told otherwise.

    Tests script behaviour by queueing exceptions for ``submit`` and
    ``poll`` (raised in order, one per call) or by queueing poll results.
    """

    def __init__(self, *, transcript_template: str = "transcript of {file_reference}") -> None:
        self._transcript_template = transcript_template
        self.jobs: dict[str, _MockJob] = {}
        self.submit_failures: deque[Exception] = deque()
        self.poll_failures: deque[Exception] = deque()
        self.poll_results: deque[PipelineResult] = deque()
        self._counter = 0

    def submit(self, *, file_reference: str, language: str, diarization: bool = False) -> str:
        if self.submit_failures:
            raise self.submit_failures.popleft()
        self._counter += 1
        external_job_id = f"mock-{self._counter}"
        self.jobs[external_job_id] = _MockJob(
            file_reference=file_reference,
            language=language,
            diarization=diarization,
        )
        return external_job_id

    def poll(self, external_job_id: str) -> PipelineResult:
        job = self.jobs[external_job_id]
        job.polls += 1
        if self.poll_failures:
            raise self.poll_failures.popleft()
        if self.poll_results:
            return self.poll_results.popleft()
        return PipelineResult(
            state=PipelineState.COMPLETED,
            transcript=self._transcript_template.format(file_reference=job.file_reference),
        )


__all__ = ["MockTranscriptionPipeline"]
