"""Conversation session: drives one producer negotiation over the workflow engine."""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from dataclasses import replace
from typing import Any, Awaitable, Callable, Optional

from .config import DEFAULT_GREETING
from .models import (
    Message,
    Outcome,
    Role,
    SessionSnapshot,
    SessionState,
)
from .outcome_extractor import (
    extract_assistant_message,
    extract_outcome,
    extract_run_id,
    extract_suspend_payload,
    extract_thread_id,
    extract_user_profile,
    is_suspend_event,
)
from .thread_store import ThreadStore
from .workflow_client import WorkflowClient, WorkflowClientError, WorkflowStream

logger = logging.getLogger(__name__)

STREAM_PLACEHOLDER = "…"
REVISION_PLACEHOLDER = "Updating plan…"
FAILED_MESSAGE = "Something went wrong."

BUSY_STATES = (SessionState.STREAMING, SessionState.RESUMING)

Listener = Callable[[SessionSnapshot], Any]


class ConversationError(RuntimeError):
    """Base class for errors raised by a conversation session."""


class PreconditionError(ConversationError):
    """Operation is not legal in the current session state."""


class ValidationError(ConversationError):
    """Caller input was rejected before any network call."""


class ConversationSession:
    """
    State machine for one producer conversation.

    Idle -> Streaming -> (AwaitingConfirmation | Idle)
    AwaitingConfirmation -> Resuming -> (AwaitingConfirmation | Confirmed | Idle)
    Confirmed -> Idle on the next send, with a fresh thread.

    Notes:
    - Only one start/resume call is in flight at a time; send/confirm/revise
      while Streaming or Resuming are no-ops that return False.
    - The transcript is only mutated from the active call. Callers read it
      through snapshot() or subscribe().
    - Without a credential every operation is a no-op and the session idles.
    """

    def __init__(
        self,
        client: WorkflowClient,
        thread_store: Optional[ThreadStore] = None,
        greeting: str = DEFAULT_GREETING,
    ):
        self.client = client
        self.thread_store = thread_store
        self.greeting = greeting

        self._state = SessionState.IDLE
        self._messages: list[Message] = [Message(role=Role.ASSISTANT, content=greeting)]
        self._outcome: Optional[Outcome] = None
        self._thread_id: Optional[str] = None
        self._run_id: Optional[str] = None
        self._user_profile: Optional[dict[str, Any]] = None
        self._error: Optional[str] = None

        self._listeners: list[Listener] = []
        self._active_task: Optional[asyncio.Task] = None
        self._cancel_requested = False

    # -----------------------
    # Observation
    # -----------------------
    @property
    def state(self) -> SessionState:
        return self._state

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self._state,
            messages=tuple(replace(m) for m in self._messages),
            outcome=copy.deepcopy(self._outcome),
            thread_id=self._thread_id,
            run_id=self._run_id,
            user_profile=copy.deepcopy(self._user_profile),
            error=self._error,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call listener with a fresh snapshot after every change. Returns an unsubscribe."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self):
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                logger.exception("Conversation listener failed")

    def _set_state(self, state: SessionState):
        if state != self._state:
            logger.debug(f"Conversation {self._thread_id}: {self._state.value} -> {state.value}")
        self._state = state
        self._notify()

    # -----------------------
    # Lifecycle
    # -----------------------
    async def start(self) -> SessionState:
        """
        Rehydrate the persisted thread, if any.

        A stored thread whose last outcome is READY starts the session in
        AwaitingConfirmation. Any failure discards the stored thread and the
        session starts fresh; it is logged, never raised.
        """
        if self._thread_id or self._state != SessionState.IDLE:
            return self._state
        if self.thread_store is None or not self.client.has_credentials():
            return self._state

        stored_thread_id = self.thread_store.load()
        if not stored_thread_id:
            return self._state

        try:
            history = await self.thread_store.fetch_history(stored_thread_id)
        except Exception as e:
            logger.warning(f"Could not rehydrate thread {stored_thread_id}, starting fresh: {e}")
            self.thread_store.clear()
            return self._state

        # A send may have started while history was loading.
        if self._thread_id or self._state != SessionState.IDLE:
            return self._state

        if history.messages:
            self._messages = list(history.messages)
        if history.latest_outcome is not None:
            self._outcome = history.latest_outcome
        if history.run_id:
            self._run_id = history.run_id
        self._thread_id = stored_thread_id
        logger.info(f"Rehydrated thread {stored_thread_id} ({len(history.messages)} messages)")

        if self._outcome is not None and self._outcome.is_ready:
            self._set_state(SessionState.AWAITING_CONFIRMATION)
        else:
            self._notify()
        return self._state

    def cancel(self) -> bool:
        """
        Abort the in-flight engine call. The session returns to Idle.

        Only the call's own child task is cancelled; the pending send,
        confirm or revise returns False and the caller's task keeps running.
        """
        task = self._active_task
        if task is None or task.done():
            return False
        logger.info(f"Cancelling active call for thread {self._thread_id}")
        self._cancel_requested = True
        task.cancel()
        return True

    def reset(self):
        """Drop the thread, run, outcome and transcript, and start over."""
        if self._state in BUSY_STATES:
            raise PreconditionError("Cannot reset while a response is streaming.")
        self._discard_thread()
        self._messages = [Message(role=Role.ASSISTANT, content=self.greeting)]
        self._error = None
        self._set_state(SessionState.IDLE)

    def _discard_thread(self):
        self._thread_id = None
        self._run_id = None
        self._outcome = None
        self._user_profile = None
        if self.thread_store is not None:
            self.thread_store.clear()

    # -----------------------
    # Operations
    # -----------------------
    async def send(self, user_message: str) -> bool:
        """
        Send a user message and stream the producer's reply.

        Returns False when ignored (call already in flight, no credential)
        or stopped by cancel().
        Raises ValidationError, PreconditionError or WorkflowClientError.
        """
        if self._state in BUSY_STATES:
            logger.debug("send ignored: call already in flight")
            return False
        if not self.client.has_credentials():
            logger.info("send ignored: no credential")
            return False

        text = (user_message or "").strip()
        if not text:
            self._reject(ValidationError("Type a message before sending."))
        if self._state == SessionState.AWAITING_CONFIRMATION:
            self._reject(PreconditionError("Confirm or revise the current plan first."))
        if self._state == SessionState.CONFIRMED:
            logger.info(f"Starting a new thread after confirmed thread {self._thread_id}")
            self._discard_thread()

        self._error = None
        # Runs never carry over between sends.
        self._run_id = None
        self._messages.append(Message(role=Role.USER, content=text))
        history = list(self._messages)
        placeholder = Message(role=Role.ASSISTANT, content=STREAM_PLACEHOLDER)
        self._messages.append(placeholder)
        if not self._thread_id:
            self._thread_id = str(uuid.uuid4())
        self._set_state(SessionState.STREAMING)

        try:
            signalled = await self._run_call(self._stream_reply(text, history, placeholder.id))
        except WorkflowClientError as e:
            self._fail(e, "Unable to stream producer response.", placeholder.id, SessionState.IDLE)
            raise
        if signalled is None:
            return False

        self._set_state(SessionState.AWAITING_CONFIRMATION if signalled else SessionState.IDLE)
        return True

    async def confirm(self) -> bool:
        """Persist the held plan and resume the suspended run."""
        if self._state in BUSY_STATES:
            logger.debug("confirm ignored: call already in flight")
            return False
        if not self.client.has_credentials():
            logger.info("confirm ignored: no credential")
            return False
        if self._state != SessionState.AWAITING_CONFIRMATION:
            self._reject(PreconditionError("There is no plan waiting for confirmation."))
        if self._outcome is None or not self._outcome.has_plan:
            self._reject(PreconditionError("Episode plan is missing. Please try again."))
        if not self._run_id:
            self._reject(PreconditionError("No suspended run to resume."))

        self._error = None
        target = next((m.id for m in reversed(self._messages) if m.role == Role.ASSISTANT), None)
        self._set_state(SessionState.RESUMING)

        signalled = await self._run_call(self._confirm_and_resume(list(self._messages), target))
        if signalled is None:
            return False

        self._set_state(SessionState.AWAITING_CONFIRMATION if signalled else SessionState.CONFIRMED)
        return True

    async def revise(self, note: str) -> bool:
        """Send a revision note and resume the suspended run unconfirmed."""
        if self._state in BUSY_STATES:
            logger.debug("revise ignored: call already in flight")
            return False
        if not self.client.has_credentials():
            logger.info("revise ignored: no credential")
            return False
        if self._state != SessionState.AWAITING_CONFIRMATION:
            self._reject(PreconditionError("There is no plan to revise."))
        text = (note or "").strip()
        if not text:
            self._reject(ValidationError("Add a revision note before resuming."))
        if not self._run_id:
            self._reject(PreconditionError("No suspended run to resume."))

        self._error = None
        self._messages.append(Message(role=Role.USER, content=text))
        history = list(self._messages)
        placeholder = Message(role=Role.ASSISTANT, content=REVISION_PLACEHOLDER)
        self._messages.append(placeholder)
        self._set_state(SessionState.RESUMING)

        signalled = await self._run_call(self._resume(
            confirmed=False,
            history=history,
            target_id=placeholder.id,
            placeholder_id=placeholder.id,
            user_message=text,
        ))
        if signalled is None:
            return False

        self._set_state(SessionState.AWAITING_CONFIRMATION if signalled else SessionState.IDLE)
        return True

    async def _run_call(self, coro: Awaitable[bool]) -> Optional[bool]:
        """
        Run one engine call as a child task that cancel() can target.

        Returns None when cancel() stopped the call. Cancellation of the
        caller's own task still propagates.
        """
        task = asyncio.ensure_future(coro)
        self._active_task = task
        self._cancel_requested = False
        try:
            return await task
        except asyncio.CancelledError:
            self._set_state(SessionState.IDLE)
            if self._cancel_requested:
                return None
            raise
        finally:
            self._active_task = None
            self._cancel_requested = False

    async def _stream_reply(self, text: str, history: list[Message], target_id: str) -> bool:
        async with self.client.start_stream(text, self._thread_id, history) as stream:
            return await self._consume(stream, target_id)

    async def _confirm_and_resume(self, history: list[Message], target_id: Optional[str]) -> bool:
        try:
            await self.client.confirm_plan(self._outcome, self._thread_id, self._user_profile)
        except WorkflowClientError as e:
            self._fail(e, "Failed to save the episode plan.", None, SessionState.AWAITING_CONFIRMATION)
            raise
        logger.info(f"Plan confirmed for thread {self._thread_id}")
        return await self._resume(
            confirmed=True,
            history=history,
            target_id=target_id,
            placeholder_id=None,
        )

    async def _resume(
        self,
        confirmed: bool,
        history: list[Message],
        target_id: Optional[str],
        placeholder_id: Optional[str],
        user_message: Optional[str] = None,
    ) -> bool:
        try:
            async with self.client.resume_stream(
                self._run_id,
                confirmed,
                self._thread_id,
                history,
                user_message=user_message,
            ) as stream:
                return await self._consume(stream, target_id)
        except WorkflowClientError as e:
            self._fail(e, "Unable to resume producer workflow.", placeholder_id, SessionState.AWAITING_CONFIRMATION)
            raise

    # -----------------------
    # Event consumption
    # -----------------------
    async def _consume(self, stream: WorkflowStream, target_id: Optional[str]) -> bool:
        """Apply events in arrival order. True if a suspend or READY signal was seen."""
        if stream.run_id:
            self._run_id = stream.run_id
        if stream.thread_id:
            self._adopt_thread_id(stream.thread_id)
        # The engine accepted the request, so the thread exists server-side.
        self._persist_thread()

        signalled = False
        async for event in stream.events():
            if self._apply_event(event, target_id):
                signalled = True
            self._notify()
        return signalled

    def _apply_event(self, event: dict[str, Any], target_id: Optional[str]) -> bool:
        signalled = False

        run_id = extract_run_id(event)
        if run_id:
            self._run_id = run_id

        thread_id = extract_thread_id(event)
        if thread_id:
            self._adopt_thread_id(thread_id)

        raw_outcome = extract_outcome(event)
        if raw_outcome is not None:
            outcome = Outcome.from_dict(raw_outcome)
            self._outcome = outcome
            text = _outcome_text(outcome)
            if text:
                self._update_message(target_id, text)
            if outcome.is_ready:
                signalled = True

        if is_suspend_event(event):
            signalled = True

        suspend_payload = extract_suspend_payload(event)
        if suspend_payload is not None:
            suspend_outcome = suspend_payload.get("outcome")
            if isinstance(suspend_outcome, dict):
                self._outcome = Outcome.from_dict(suspend_outcome)
            profile = extract_user_profile(suspend_payload)
            if profile is not None:
                self._user_profile = profile
            text = extract_assistant_message(suspend_payload)
            if text:
                self._update_message(target_id, text)

        return signalled

    def _adopt_thread_id(self, thread_id: str):
        if thread_id == self._thread_id:
            return
        logger.info(f"Engine assigned thread {thread_id} (was {self._thread_id})")
        self._thread_id = thread_id
        self._persist_thread()

    def _persist_thread(self):
        if self.thread_store is not None and self._thread_id:
            self.thread_store.persist(self._thread_id)

    def _update_message(self, message_id: Optional[str], content: str):
        if message_id is None:
            return
        for message in self._messages:
            if message.id == message_id:
                message.content = content
                return

    def _reject(self, error: ConversationError):
        self._error = str(error)
        self._notify()
        raise error

    def _fail(
        self,
        error: WorkflowClientError,
        fallback: str,
        placeholder_id: Optional[str],
        state: SessionState,
    ):
        self._error = str(error) or fallback
        if placeholder_id is not None:
            self._update_message(placeholder_id, FAILED_MESSAGE)
        self._set_state(state)


def _outcome_text(outcome: Outcome) -> Optional[str]:
    for text in (outcome.assistant_message, outcome.next_question):
        if text and text.strip():
            return text
    return None
