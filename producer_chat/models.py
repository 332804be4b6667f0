"""Data models for the producer chat client."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, List
import uuid


class Role(Enum):
    """Transcript message author."""
    USER = "user"
    ASSISTANT = "assistant"


class SessionState(Enum):
    """Conversation session lifecycle state."""
    IDLE = "idle"                                    # Ready for a new send
    STREAMING = "streaming"                          # Start stream in flight
    AWAITING_CONFIRMATION = "awaiting_confirmation"  # Run suspended on a plan
    RESUMING = "resuming"                            # Confirm/revise resume in flight
    CONFIRMED = "confirmed"                          # Plan confirmed, run finished


class OutcomeStatus(Enum):
    """Status of a producer outcome."""
    READY = "READY"                        # Plan is ready to confirm
    NEEDS_USER_REPLY = "NEEDS_USER_REPLY"  # Producer asked a follow-up question


def new_message_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Message:
    """One transcript entry."""
    role: Role
    content: str
    id: str = field(default_factory=new_message_id)

    def to_wire(self) -> dict:
        """Shape sent to the workflow engine (no id)."""
        return {"role": self.role.value, "content": self.content}

    def to_dict(self) -> dict:
        return {"id": self.id, "role": self.role.value, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        return cls(
            id=data.get("id") or new_message_id(),
            role=Role(data["role"]),
            content=data.get("content") or "",
        )


def _str_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def _number_or_none(value: Any):
    # bool is an int subclass; a JSON true is not a duration
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


@dataclass
class Segment:
    """One planned segment of an episode."""
    id: Optional[str] = None
    title: Optional[str] = None
    goal: Optional[str] = None
    minutes: Optional[float] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Segment":
        return cls(
            id=_str_or_none(data.get("id")),
            title=_str_or_none(data.get("title")),
            goal=_str_or_none(data.get("goal")),
            minutes=_number_or_none(data.get("minutes")),
        )


@dataclass
class Personalization:
    """Listener preference hints attached to a plan."""
    more_of: List[str] = field(default_factory=list)
    less_of: List[str] = field(default_factory=list)
    callbacks_to_last_episode: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "Personalization":
        return cls(
            more_of=_str_list(data.get("moreOf")),
            less_of=_str_list(data.get("lessOf")),
            callbacks_to_last_episode=_str_list(data.get("callbacksToLastEpisode")),
        )


@dataclass
class ResearchDirective:
    """Whether the plan needs web research, and the queries to run."""
    needed: bool = False
    queries: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "ResearchDirective":
        return cls(
            needed=data.get("needed") is True,
            queries=_str_list(data.get("queries")),
        )


@dataclass
class EpisodeSpec:
    """The structured plan a listener confirms."""
    title: Optional[str] = None
    listener_intent: Optional[str] = None
    timeframe: Optional[str] = None
    style: Optional[str] = None
    duration_minutes: Optional[float] = None
    segments: List[Segment] = field(default_factory=list)
    personalization: Optional[Personalization] = None
    research: Optional[ResearchDirective] = None

    @classmethod
    def from_dict(cls, data: dict) -> "EpisodeSpec":
        segments = data.get("segments")
        personalization = data.get("personalization")
        research = data.get("research")
        return cls(
            title=_str_or_none(data.get("episodeTitle")),
            listener_intent=_str_or_none(data.get("listenerIntent")),
            timeframe=_str_or_none(data.get("timeframe")),
            style=_str_or_none(data.get("style")),
            duration_minutes=_number_or_none(data.get("durationMinutes")),
            segments=[
                Segment.from_dict(s) for s in segments if isinstance(s, dict)
            ] if isinstance(segments, list) else [],
            personalization=(
                Personalization.from_dict(personalization)
                if isinstance(personalization, dict) else None
            ),
            research=ResearchDirective.from_dict(research) if isinstance(research, dict) else None,
        )


@dataclass
class Outcome:
    """
    Latest plan proposal or follow-up question from the producer.

    Always replaced wholesale. ``raw`` keeps the wire object exactly as it
    arrived so it can be echoed back to the confirm endpoint.
    """
    status: Optional[OutcomeStatus] = None
    assistant_message: Optional[str] = None
    next_question: Optional[str] = None
    episode_spec: Optional[EpisodeSpec] = None
    raw: dict = field(default_factory=dict)

    @property
    def is_ready(self) -> bool:
        return self.status == OutcomeStatus.READY

    @property
    def has_plan(self) -> bool:
        return self.episode_spec is not None

    def to_dict(self) -> dict:
        return dict(self.raw)

    @classmethod
    def from_dict(cls, data: dict) -> "Outcome":
        try:
            status = OutcomeStatus(data.get("status"))
        except ValueError:
            status = None
        spec = data.get("episodeSpec")
        return cls(
            status=status,
            assistant_message=_str_or_none(data.get("assistantMessage")),
            next_question=_str_or_none(data.get("nextQuestion")),
            episode_spec=EpisodeSpec.from_dict(spec) if isinstance(spec, dict) else None,
            raw=dict(data),
        )


@dataclass
class ThreadHistory:
    """Messages and last known outcome for a stored thread."""
    thread_id: str
    messages: List[Message] = field(default_factory=list)
    latest_outcome: Optional[Outcome] = None
    run_id: Optional[str] = None

    @classmethod
    def from_dict(cls, thread_id: str, data: dict) -> "ThreadHistory":
        messages: List[Message] = []
        raw_messages = data.get("messages")
        if isinstance(raw_messages, list):
            for index, item in enumerate(raw_messages):
                if not isinstance(item, dict):
                    continue
                if item.get("role") not in (Role.USER.value, Role.ASSISTANT.value):
                    continue
                content = item.get("content")
                messages.append(Message(
                    id=item.get("id") or f"{thread_id}-{index}",
                    role=Role(item["role"]),
                    content=content if isinstance(content, str) else "",
                ))
        latest = data.get("latestOutcome")
        return cls(
            thread_id=thread_id,
            messages=messages,
            latest_outcome=Outcome.from_dict(latest) if isinstance(latest, dict) else None,
            run_id=_str_or_none(data.get("runId")) or None,
        )


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of a conversation session."""
    state: SessionState
    messages: tuple
    outcome: Optional[Outcome] = None
    thread_id: Optional[str] = None
    run_id: Optional[str] = None
    user_profile: Optional[dict] = None
    error: Optional[str] = None

    @property
    def awaiting_confirmation(self) -> bool:
        return self.state == SessionState.AWAITING_CONFIRMATION

    @property
    def busy(self) -> bool:
        return self.state in (SessionState.STREAMING, SessionState.RESUMING)

    def to_dict(self) -> dict:
        """Convert snapshot to dictionary for JSON serialization."""
        return {
            "state": self.state.value,
            "messages": [m.to_dict() for m in self.messages],
            "outcome": self.outcome.to_dict() if self.outcome else None,
            "thread_id": self.thread_id,
            "run_id": self.run_id,
            "user_profile": self.user_profile,
            "error": self.error,
        }
