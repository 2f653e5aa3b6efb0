"""Minimal async Replicate predictions client built on httpx.

HTTP 429 and 5xx responses become TransientBackendError (retried by the
executor); any other 4xx becomes TerminalBackendError. Timeouts and network
errors propagate as httpx exceptions and are classified by the executor.
"""

import logging
import os
from pathlib import Path
from typing import Any

import httpx

from promoreel.errors import TerminalBackendError, TransientBackendError
from promoreel.services.file_manager import temp_path_for
from promoreel.services.polling import OperationState, PollStatus

logger = logging.getLogger(__name__)

REPLICATE_API_URL = "https://api.replicate.com/v1"

_PENDING_STATUSES = {"starting", "processing"}
_FAILED_STATUSES = {"failed", "canceled"}


def _raise_for_status(response: httpx.Response) -> None:
    if response.is_success:
        return
    try:
        body = response.json()
        detail = body.get("detail") or body.get("error") or response.text
    except ValueError:
        detail = response.text
    message = f"Replicate HTTP {response.status_code}: {str(detail)[:300]}"
    if response.status_code == 429 or response.status_code >= 500:
        raise TransientBackendError(message, category=str(response.status_code))
    raise TerminalBackendError(message, category=str(response.status_code))


class ReplicateClient:
    """Create predictions, check them, and download their output."""

    def __init__(
        self,
        api_token: str,
        *,
        base_url: str = REPLICATE_API_URL,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._headers = {
            "Authorization": f"Bearer {api_token}",
            "Content-Type": "application/json",
        }
        self._base_url = base_url
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
            follow_redirects=True,
        )

    async def create_prediction(self, model: str, model_input: dict[str, Any]) -> dict[str, Any]:
        async with self._client() as client:
            response = await client.post(f"/models/{model}/predictions", json={"input": model_input})
        _raise_for_status(response)
        prediction = response.json()
        logger.info(f"Replicate prediction {prediction.get('id')} created for {model}")
        return prediction

    async def get_prediction(self, prediction_id: str) -> dict[str, Any]:
        async with self._client() as client:
            response = await client.get(f"/predictions/{prediction_id}")
        _raise_for_status(response)
        return response.json()

    async def check(self, prediction: dict[str, Any]) -> PollStatus[dict[str, Any]]:
        """Refresh a prediction and classify it for ``poll_operation``."""
        refreshed = await self.get_prediction(prediction["id"])
        status = refreshed.get("status")
        if status == "succeeded":
            return PollStatus(OperationState.SUCCEEDED, refreshed)
        if status in _FAILED_STATUSES:
            return PollStatus(
                OperationState.FAILED,
                refreshed,
                error=f"Replicate prediction {status}: {refreshed.get('error') or 'Unknown error'}",
            )
        if status not in _PENDING_STATUSES:
            logger.debug(f"Replicate prediction {prediction['id']} reported status {status!r}")
        return PollStatus(OperationState.POLLING, refreshed)

    async def download(self, url: str, output_path: Path) -> Path:
        """Stream ``url`` to ``output_path`` via a temp file."""
        tmp_path = temp_path_for(output_path)
        try:
            async with self._client() as client:
                async with client.stream("GET", url) as response:
                    if not response.is_success:
                        await response.aread()
                        _raise_for_status(response)
                    with open(tmp_path, "wb") as f:
                        async for chunk in response.aiter_bytes():
                            f.write(chunk)
            os.replace(tmp_path, output_path)
        finally:
            tmp_path.unlink(missing_ok=True)
        return Path(output_path)


def prediction_output_url(prediction: dict[str, Any]) -> str:
    output = prediction.get("output")
    url = output[0] if isinstance(output, list) and output else output
    if not url or not isinstance(url, str):
        raise TerminalBackendError("No output URL in Replicate response", category="processing")
    return url
