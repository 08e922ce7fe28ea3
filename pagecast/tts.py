"""Synthesis clients.

A client submits one page of text as an asynchronous synthesis job and
reports the job's status on request. Clients are blocking; the engine runs
them in an executor.
"""

import logging
from typing import Optional

import requests

from .config import PlayHTConfig
from .jobs.errors import PollError, SynthesisRejected
from .jobs.models import PageStatus, PollResult

logger = logging.getLogger(__name__)


class TTSClient:
    """Interface of an external asynchronous speech-synthesis service."""

    def submit(self, text: str, voice_id: str, temperature: Optional[float], speed: float) -> str:
        """
        Start a synthesis job.

        Returns:
            Job handle

        Raises:
            SynthesisRejected: If the provider refused or could not be reached
        """
        raise NotImplementedError

    def query_status(self, job_id: str) -> PollResult:
        """
        Report the status of a job.

        Raises:
            PollError: If the status could not be retrieved
        """
        raise NotImplementedError


class PlayHTClient(TTSClient):
    """Client for the PlayHT asynchronous TTS API."""

    def __init__(self, config: Optional[PlayHTConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or PlayHTConfig.from_env()
        self.session = session or requests.Session()

    def _headers(self) -> dict:
        return {
            'AUTHORIZATION': self.config.api_key,
            'X-USER-ID': self.config.user_id,
        }

    def submit(self, text: str, voice_id: str, temperature: Optional[float], speed: float) -> str:
        payload = {
            'model': self.config.model,
            'text': text,
            'voice': voice_id,
            'speed': speed,
        }
        if temperature is not None:
            payload['temperature'] = temperature

        try:
            response = self.session.post(
                self.config.api_url,
                json=payload,
                headers=self._headers(),
                timeout=self.config.request_timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else None
            detail = _error_detail(e.response)
            logger.error("Failed to initiate audio generation: %s %s", status_code, detail)
            raise SynthesisRejected(
                f"Synthesis request rejected ({status_code}): {detail}",
                status_code=status_code
            ) from e
        except (requests.RequestException, ValueError) as e:
            logger.error("Failed to initiate audio generation: %s", e)
            raise SynthesisRejected(f"Synthesis request failed: {e}") from e

        job_id = data.get('id') if isinstance(data, dict) else None
        if not job_id:
            raise SynthesisRejected("Synthesis response did not contain a job id")
        return str(job_id)

    def query_status(self, job_id: str) -> PollResult:
        try:
            response = self.session.get(
                f"{self.config.api_url}/{job_id}",
                headers=self._headers(),
                timeout=self.config.request_timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise PollError(f"Failed to check job status for {job_id}: {e}") from e

        output = (data or {}).get('output') or {}
        status = str(output.get('status') or '').upper()

        if status == 'COMPLETED' and output.get('url'):
            return PollResult(status=PageStatus.COMPLETED, url=output['url'])
        if status in ('FAILED', 'ERROR'):
            error = output.get('error') or data.get('error') or f"Synthesis job {job_id} failed"
            return PollResult(status=PageStatus.FAILED, error=str(error))
        return PollResult(status=PageStatus.PROCESSING)


def _error_detail(response) -> str:
    if response is None:
        return "no response"
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason or ""
    if isinstance(body, dict):
        return str(body.get('error_message') or body.get('error') or body.get('message') or body)
    return str(body)
