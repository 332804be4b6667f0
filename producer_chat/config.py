"""Configuration loading for the producer chat client."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://127.0.0.1:3344"
DEFAULT_GREETING = "Tell me what you want to listen to and I’ll draft a plan."
MAX_HISTORY_LIMIT = 200


def load_config(config_path: str = "config.yaml") -> dict:
    """Load configuration from YAML file."""
    path = Path(config_path).expanduser()

    if not path.exists():
        logger.warning(f"Config file not found: {config_path}, using defaults")
        return {}

    with open(path) as f:
        return yaml.safe_load(f) or {}


@dataclass
class ProducerChatConfig:
    """Endpoints, timeouts and storage for the producer chat client."""
    api_base_url: str = DEFAULT_API_URL
    stream_path: str = "/producer/chat/stream"
    resume_path: str = "/producer/chat/resume"
    confirm_path: str = "/producer/chat/confirm"
    thread_path: str = "/producer/chat/thread/{thread_id}"
    run_id_header: str = "x-run-id"
    thread_id_header: str = "x-thread-id"
    connect_timeout_seconds: float = 10.0
    request_timeout_seconds: float = 30.0  # Non-streaming calls only
    history_limit: Optional[int] = None
    db_path: str = "~/.local/share/producer-chat/threads.db"
    greeting: str = DEFAULT_GREETING

    def __post_init__(self):
        self.api_base_url = self.api_base_url.rstrip("/")
        if self.history_limit is not None:
            self.history_limit = min(max(int(self.history_limit), 1), MAX_HISTORY_LIMIT)

    @classmethod
    def from_dict(cls, config: Optional[dict] = None) -> "ProducerChatConfig":
        """Build from a loaded config dict (``api`` and ``storage`` sections)."""
        config = config or {}
        api_config = config.get("api", {}) or {}
        storage_config = config.get("storage", {}) or {}
        conversation_config = config.get("conversation", {}) or {}

        values = {
            key: api_config[key]
            for key in (
                "stream_path",
                "resume_path",
                "confirm_path",
                "thread_path",
                "run_id_header",
                "thread_id_header",
                "connect_timeout_seconds",
                "request_timeout_seconds",
                "history_limit",
            )
            if api_config.get(key) is not None
        }
        base_url = os.environ.get("PRODUCER_CHAT_API_URL") or api_config.get("base_url")
        if base_url:
            values["api_base_url"] = base_url
        if storage_config.get("db_path"):
            values["db_path"] = storage_config["db_path"]
        if conversation_config.get("greeting"):
            values["greeting"] = conversation_config["greeting"]
        return cls(**values)
