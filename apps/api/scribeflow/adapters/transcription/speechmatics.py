"""Speechmatics batch API adapter."""

from __future__ import annotations

import json
import logging

import httpx

from scribeflow.adapters.transcription.base import (
    PipelineFatalError,
    PipelineResult,
    PipelineState,
    PipelineTransientError,
    TranscriptionPipeline,
)

logger = logging.getLogger(__name__)

_RUNNING_STATES = frozenset({"running", "queued", "accepted"})
_FAILED_STATES = frozenset({"rejected", "deleted", "expired"})


class SpeechmaticsPipeline(TranscriptionPipeline):
    """Submits media by URL and fetches plain-text transcripts.

    5xx and 429 responses are transient, as are timeouts; any other
    4xx response is fatal for the job.
    """

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://asr.api.speechmatics.com/v2",
        timeout_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._transport = transport

    def submit(self, *, file_reference: str, language: str, diarization: bool = False) -> str:
        transcription_config: dict[str, object] = {"language": language}
        if diarization:
            transcription_config["diarization"] = "speaker"
        config = {
            "type": "transcription",
            "fetch_data": {"url": file_reference},
            "transcription_config": transcription_config,
        }
        response = self._request("POST", "/jobs", files={"config": (None, json.dumps(config))})
        external_job_id = str(response.json().get("id") or "").strip()
        if not external_job_id:
            raise PipelineTransientError("Speechmatics accepted the job without returning an id")
        return external_job_id

    def poll(self, external_job_id: str) -> PipelineResult:
        response = self._request("GET", f"/jobs/{external_job_id}")
        status = str(response.json().get("job", {}).get("status", "")).lower()
        if status in _RUNNING_STATES:
            return PipelineResult(state=PipelineState.RUNNING)
        if status in _FAILED_STATES:
            return PipelineResult(state=PipelineState.FAILED, error=f"provider status {status}")
        if status != "done":
            raise PipelineTransientError(f"Unrecognized Speechmatics job status: {status or 'missing'}")

        transcript = self._request(
            "GET",
            f"/jobs/{external_job_id}/transcript",
            params={"format": "txt"},
        )
        return PipelineResult(state=PipelineState.COMPLETED, transcript=transcript.text)

    def _request(self, method: str, path: str, **kwargs: object) -> httpx.Response:
        try:
            with httpx.Client(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
                headers={"Authorization": f"Bearer {self._api_key}"},
            ) as client:
                response = client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise PipelineTransientError("Speechmatics request timed out") from exc
        except httpx.TransportError as exc:
            raise PipelineTransientError("Speechmatics is unreachable") from exc

        if response.status_code >= 500 or response.status_code == 429:
            logger.warning(
                "pipeline.provider_unavailable provider=speechmatics method=%s status_code=%s",
                method,
                response.status_code,
            )
            raise PipelineTransientError(f"Speechmatics returned {response.status_code}")
        if response.status_code >= 400:
            raise PipelineFatalError(f"Speechmatics rejected the request: {response.status_code}")
        return response


__all__ = ["SpeechmaticsPipeline"]
