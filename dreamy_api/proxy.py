import asyncio
import base64
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import httpx

from .errors import (
    ClientInputError,
    ConfigurationError,
    PollingTimeout,
    SubmissionError,
    TransportError,
    UpstreamFailure,
    exception_detail,
    response_detail,
)
from .models import InlineOutput, JobHandle, JobOutcome, JobStatus, is_terminal, normalize_status
from .remote import RemoteJobService
from .variants import JobVariant

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class _TransientPollError(Exception):
    def __init__(self, message: str, detail: Any):
        super().__init__(message)
        self.detail = detail


def _read_status(payload: Dict[str, Any], job_id: Optional[str]) -> JobStatus:
    raw = payload.get("status")
    status = normalize_status(raw)
    if status is None:
        logger.warning("Job %s reported unknown status %r, treating as running", job_id, raw)
        return "running"
    return status


def _json_object(response: httpx.Response) -> Optional[Dict[str, Any]]:
    try:
        payload = response.json()
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


class JobProxy:
    """Submits a remote job, waits for it on a bounded schedule and maps the outcome.

    The credential is fixed at construction; every handle this proxy creates is
    polled through the same RemoteJobService, hence under the same credential.
    """

    def __init__(
        self,
        remote: RemoteJobService,
        credential: Optional[str],
        *,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        poll_retries: int = 0,
        retry_backoff: float = 0.5,
    ):
        self.remote = remote
        self.credential = credential
        self.clock = clock
        self.sleep = sleep
        self.poll_retries = max(0, poll_retries)
        self.retry_backoff = retry_backoff

    def _check_ready(self, job_input: Optional[Dict[str, Any]]) -> None:
        if not job_input:
            raise ClientInputError("Missing 'input' in request body")
        if not (self.credential and self.credential.strip()):
            raise ConfigurationError("REPLICATE_API_TOKEN not set")

    async def submit(
        self, variant: JobVariant, job_input: Optional[Dict[str, Any]]
    ) -> Tuple[JobHandle, JobStatus, Dict[str, Any]]:
        self._check_ready(job_input)

        submitted_at = self.clock()
        try:
            response = await self.remote.create(variant.model, job_input, wait=variant.wait)
        except httpx.HTTPError as exc:
            raise SubmissionError(f"Failed to submit {variant.name} job", exception_detail(exc)) from exc

        if not response.is_success:
            raise SubmissionError(f"Failed to submit {variant.name} job", response_detail(response))

        payload = _json_object(response)
        if payload is None or not payload.get("id") or "status" not in payload:
            raise SubmissionError(
                f"Malformed response submitting {variant.name} job", response_detail(response)
            )

        handle = JobHandle(id=str(payload["id"]), submitted_at=submitted_at)
        status = _read_status(payload, handle.id)
        logger.info("Submitted %s job %s (status=%s)", variant.name, handle.id, status)
        return handle, status, payload

    async def _poll_once(self, handle: JobHandle) -> Dict[str, Any]:
        try:
            response = await self.remote.fetch(handle.id)
        except httpx.TransportError as exc:
            raise _TransientPollError(f"Polling job {handle.id} failed", exception_detail(exc)) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Polling job {handle.id} failed", exception_detail(exc)) from exc

        if response.status_code in _RETRYABLE_STATUS:
            raise _TransientPollError(f"Polling job {handle.id} failed", response_detail(response))
        if not response.is_success:
            raise TransportError(f"Polling job {handle.id} failed", response_detail(response))

        payload = _json_object(response)
        if payload is None:
            raise TransportError(f"Malformed status for job {handle.id}", response_detail(response))
        return payload

    async def _poll(self, handle: JobHandle, deadline: float) -> Dict[str, Any]:
        attempt = 0
        while True:
            try:
                return await self._poll_once(handle)
            except _TransientPollError as exc:
                remaining = deadline - (self.clock() - handle.submitted_at)
                if attempt >= self.poll_retries or remaining <= 0:
                    raise TransportError(str(exc), exc.detail) from exc
                delay = min(self.retry_backoff * (2 ** attempt), remaining)
                attempt += 1
                logger.warning(
                    "Transient error polling job %s (attempt %d/%d), retrying in %.2fs: %s",
                    handle.id, attempt, self.poll_retries, delay, exc.detail,
                )
                await self.sleep(delay)

    async def await_completion(
        self,
        handle: JobHandle,
        status: JobStatus,
        snapshot: Dict[str, Any],
        *,
        deadline: float,
        poll_interval: float,
    ) -> JobOutcome:
        last = snapshot
        polls = 0
        try:
            while not is_terminal(status):
                if self.clock() - handle.submitted_at > deadline:
                    logger.warning(
                        "Job %s still %s after %.0fs (%d polls)", handle.id, status, deadline, polls
                    )
                    return JobOutcome(status=status, result=last, timed_out=True)
                await self.sleep(poll_interval)
                last = await self._poll(handle, deadline)
                polls += 1
                status = _read_status(last, handle.id)
                logger.debug("Job %s poll %d: %s", handle.id, polls, status)
        except asyncio.CancelledError:
            logger.info("Stopped polling job %s after %d polls", handle.id, polls)
            raise

        logger.info("Job %s finished with status %s after %d polls", handle.id, status, polls)
        return JobOutcome(status=status, result=last)

    async def proxy_job(self, variant: JobVariant, job_input: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        handle, status, snapshot = await self.submit(variant, job_input)
        outcome = await self.await_completion(
            handle,
            status,
            snapshot,
            deadline=variant.deadline,
            poll_interval=variant.poll_interval,
        )
        return self._relay(variant, outcome)

    async def run_sync(self, variant: JobVariant, job_input: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """One blocking create call (the remote holds the response open), no polling."""
        _, status, payload = await self.submit(variant, job_input)
        return self._relay(variant, JobOutcome(status=status, result=payload, timed_out=not is_terminal(status)))

    async def inline_output(self, result: Dict[str, Any]) -> InlineOutput:
        """Download the first output file of a finished job and return it base64-encoded."""
        output = result.get("output")
        url = output[0] if isinstance(output, list) and output else output
        if not isinstance(url, str) or not url:
            raise UpstreamFailure("Job succeeded without an output file", result)

        try:
            response = await self.remote.download(url)
        except httpx.HTTPError as exc:
            raise TransportError("Failed to download job output", exception_detail(exc)) from exc
        if not response.is_success:
            raise TransportError("Failed to download job output", f"HTTP {response.status_code}")

        return InlineOutput(
            id=result.get("id"),
            output=base64.b64encode(response.content).decode("ascii"),
            type=response.headers.get("content-type", "image/jpeg"),
        )

    def _relay(self, variant: JobVariant, outcome: JobOutcome) -> Dict[str, Any]:
        if outcome.timed_out:
            raise PollingTimeout(f"{variant.name} polling timeout", outcome.result)
        if outcome.status != "succeeded":
            raise UpstreamFailure(f"{variant.name} job {outcome.status}", outcome.result)
        return outcome.result
