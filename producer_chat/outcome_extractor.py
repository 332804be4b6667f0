"""Recover producer facts from loosely shaped workflow events.

The engine wraps the same logical field differently depending on which
pipeline stage emitted the event, so every lookup walks a priority-ordered
list of paths and returns None instead of raising when a shape is absent.
"""

from __future__ import annotations

from typing import Any, Optional

OUTCOME_PATHS: tuple[tuple[str, ...], ...] = (
    ("outcome",),
    ("output", "outcome"),
    ("result", "outcome"),
    ("data", "outcome"),
)

THREAD_ID_KEYS = ("threadId", "thread_id", "thread")


def _payload(event: Any) -> dict[str, Any]:
    if not isinstance(event, dict):
        return {}
    payload = event.get("payload")
    return payload if isinstance(payload, dict) else {}


def _dig(data: Any, path: tuple[str, ...]) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def extract_outcome(event: Any) -> Optional[dict[str, Any]]:
    """First outcome object found under the payload, by path priority."""
    payload = _payload(event)
    for path in OUTCOME_PATHS:
        candidate = _dig(payload, path)
        if isinstance(candidate, dict):
            return candidate
    return None


def extract_thread_id(event: Any) -> Optional[str]:
    payload = _payload(event)
    for key in THREAD_ID_KEYS:
        value = payload.get(key)
        if value is None:
            continue
        return value if isinstance(value, str) and value else None
    return None


def extract_run_id(event: Any) -> Optional[str]:
    if not isinstance(event, dict):
        return None
    run_id = event.get("runId")
    return run_id if isinstance(run_id, str) and run_id else None


def is_suspend_event(event: Any) -> bool:
    if not isinstance(event, dict):
        return False
    event_type = event.get("type")
    return isinstance(event_type, str) and "suspend" in event_type.lower()


def extract_suspend_payload(event: Any) -> Optional[dict[str, Any]]:
    """suspendPayload of a suspend-type event, else its raw payload."""
    if not is_suspend_event(event):
        return None
    payload = event.get("payload")
    if not isinstance(payload, dict):
        return None
    suspend_payload = payload.get("suspendPayload")
    if isinstance(suspend_payload, dict):
        return suspend_payload
    return payload


def extract_assistant_message(payload: Any) -> Optional[str]:
    """
    Assistant text carried by a payload.

    Prefers a non-blank ``outcome.assistantMessage``; falls back to the last
    entry of ``messages`` when it is an assistant message with text content.
    """
    if not isinstance(payload, dict):
        return None
    direct = _dig(payload, ("outcome", "assistantMessage"))
    if isinstance(direct, str) and direct.strip():
        return direct
    messages = payload.get("messages")
    if isinstance(messages, list) and messages:
        last = messages[-1]
        if isinstance(last, dict) and last.get("role") == "assistant":
            content = last.get("content")
            if isinstance(content, str):
                return content
    return None


def extract_user_profile(suspend_payload: Any) -> Optional[dict[str, Any]]:
    if not isinstance(suspend_payload, dict):
        return None
    profile = suspend_payload.get("userProfile")
    return profile if isinstance(profile, dict) else None
