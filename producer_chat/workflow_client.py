"""HTTP client for the producer workflow engine (start/resume streams, confirm, history)."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Optional
from urllib.parse import quote

import httpx

from .config import ProducerChatConfig
from .event_decoder import iter_events
from .models import Message, Outcome, ThreadHistory

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Optional[str]]


class WorkflowClientError(RuntimeError):
    """Raised for transport failures talking to the workflow engine."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class WorkflowStream:
    """An open event stream plus the identifiers its response headers exposed."""
    response: httpx.Response
    run_id: Optional[str] = None
    thread_id: Optional[str] = None

    def events(self) -> AsyncIterator[dict[str, Any]]:
        return iter_events(self.response.aiter_bytes())


class WorkflowClient:
    """
    Talks to the producer chat endpoints with a bearer credential.

    Notes:
    - Stream responses are newline-delimited JSON with an optional ``data:``
      prefix; they have no read timeout because the engine may think for a while.
    - Non-2xx responses raise WorkflowClientError carrying the body text.
    """

    def __init__(
        self,
        config: ProducerChatConfig,
        token_provider: TokenProvider,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.token_provider = token_provider
        self._http = httpx.AsyncClient(
            base_url=config.api_base_url,
            timeout=httpx.Timeout(
                config.request_timeout_seconds,
                connect=config.connect_timeout_seconds,
            ),
            transport=transport,
        )

    def has_credentials(self) -> bool:
        return bool(self.token_provider())

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self.token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    @staticmethod
    def _header_value(response: httpx.Response, name: str) -> Optional[str]:
        value = response.headers.get(name)
        return value.strip() if value and value.strip() else None

    @staticmethod
    async def _raise_for_status(response: httpx.Response, what: str):
        if response.is_success:
            return
        try:
            text = (await response.aread()).decode("utf-8", errors="replace").strip()
        except httpx.HTTPError:
            text = ""
        logger.error(f"{what} failed ({response.status_code}): {text[:500]}")
        raise WorkflowClientError(text or f"{what} failed ({response.status_code})", response.status_code)

    @asynccontextmanager
    async def _open_stream(self, path: str, body: dict[str, Any], what: str) -> AsyncIterator[WorkflowStream]:
        try:
            async with self._http.stream(
                "POST",
                path,
                json=body,
                headers=self._headers(),
                timeout=httpx.Timeout(None, connect=self.config.connect_timeout_seconds),
            ) as response:
                await self._raise_for_status(response, what)
                yield WorkflowStream(
                    response=response,
                    run_id=self._header_value(response, self.config.run_id_header),
                    thread_id=self._header_value(response, self.config.thread_id_header),
                )
        except httpx.HTTPError as e:
            logger.error(f"{what} failed: {e}")
            raise WorkflowClientError(f"{what} failed: {e}") from e

    def start_stream(
        self,
        user_message: str,
        thread_id: str,
        messages: list[Message],
    ):
        """Open a stream for a new user message. Use as ``async with``."""
        body = {
            "userMessage": user_message,
            "threadId": thread_id,
            "messages": [m.to_wire() for m in messages],
        }
        return self._open_stream(self.config.stream_path, body, "Request")

    def resume_stream(
        self,
        run_id: str,
        confirmed: bool,
        thread_id: Optional[str],
        messages: list[Message],
        user_message: Optional[str] = None,
    ):
        """Open a stream resuming a suspended run. Use as ``async with``."""
        body: dict[str, Any] = {
            "runId": run_id,
            "confirmed": confirmed,
            "threadId": thread_id,
            "messages": [m.to_wire() for m in messages],
        }
        if user_message is not None:
            body["userMessage"] = user_message
        return self._open_stream(self.config.resume_path, body, "Resume")

    async def confirm_plan(
        self,
        outcome: Outcome,
        thread_id: Optional[str],
        user_profile: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Persist a confirmed plan. Returns the engine's JSON reply (may be empty)."""
        body: dict[str, Any] = {"outcome": outcome.to_dict(), "threadId": thread_id}
        if user_profile is not None:
            body["userProfile"] = user_profile
        try:
            response = await self._http.post(self.config.confirm_path, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            logger.error(f"Confirm failed: {e}")
            raise WorkflowClientError(f"Confirm failed: {e}") from e
        await self._raise_for_status(response, "Confirm")
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    async def fetch_thread(self, thread_id: str) -> ThreadHistory:
        """Load message history and latest outcome for a thread."""
        path = self.config.thread_path.format(thread_id=quote(thread_id, safe=""))
        params = {}
        if self.config.history_limit:
            params["limit"] = str(self.config.history_limit)
        try:
            response = await self._http.get(path, params=params or None, headers=self._headers())
        except httpx.HTTPError as e:
            raise WorkflowClientError(f"Thread load failed: {e}") from e
        await self._raise_for_status(response, "Thread load")
        try:
            data = response.json()
        except ValueError as e:
            raise WorkflowClientError("Thread load returned invalid JSON", response.status_code) from e
        if not isinstance(data, dict):
            raise WorkflowClientError("Thread load returned unexpected body", response.status_code)
        return ThreadHistory.from_dict(thread_id, data)

    async def aclose(self):
        await self._http.aclose()
