from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sleuth.config.load_config import AppConfig
from sleuth.llm.openai_compat import OpenAICompatibleChatClient
from sleuth.storage.sqlite_store import SQLiteStore
from sleuth.tools.verifier import VerifierClient


@dataclass
class AgentContext:
    store: SQLiteStore
    config: AppConfig
    llm: OpenAICompatibleChatClient | None
    verifier: VerifierClient | None
    run_id: str

    def trace(self, event_type: str, payload: dict[str, Any]) -> None:
        self.store.append_event(self.run_id, event_type, payload)
