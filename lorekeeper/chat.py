"""Campaign chat grounded in the knowledge graph.

``CampaignChat.answer`` retrieves chunks for the user's message, renders
them into the system prompt and asks the model for a reply. In ``direct``
mode the model is skipped and only the retrieved sources come back.
Retrieval never raises for provider trouble; model failures surface as
``ChatError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from anthropic import APIError, AsyncAnthropic

from .prompts import build_chat_system_prompt
from .search import RetrievalEngine, SearchResult, build_context
from .settings import SearchSettings

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 10
DEFAULT_CHAT_MAX_TOKENS = 1024
FALLBACK_ANSWER = "I was unable to generate a response."
CHAT_MODES = ("rag", "direct")


class ChatError(RuntimeError):
    """The model could not produce a reply."""


@dataclass
class ChatMessage:
    role: str  # user | assistant
    content: str


@dataclass
class ChatResponse:
    content: Optional[str]
    sources: List[SearchResult] = field(default_factory=list)
    mode: str = "rag"
    search_mode: str = "vector"
    degraded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "sources": [s.to_dict() for s in self.sources],
            "mode": self.mode,
            "search_mode": self.search_mode,
            "degraded": self.degraded,
        }


class CampaignChat:
    """Retrieval-augmented answers about one campaign."""

    def __init__(
        self,
        retrieval: RetrievalEngine,
        client: Optional[AsyncAnthropic] = None,
        model: str = "",
        max_tokens: int = DEFAULT_CHAT_MAX_TOKENS,
    ) -> None:
        self.retrieval = retrieval
        self.client = client
        self.model = model
        self.max_tokens = max_tokens

    @property
    def available(self) -> bool:
        return self.client is not None

    async def answer(
        self,
        campaign_id: str,
        message: str,
        history: Sequence[ChatMessage] = (),
        settings: Optional[SearchSettings] = None,
        privileged: bool = False,
        mode: str = "rag",
        custom_prompts: Optional[Dict[str, str]] = None,
    ) -> ChatResponse:
        if mode not in CHAT_MODES:
            raise ValueError(f"mode must be one of {CHAT_MODES}, got {mode!r}")
        if not message or not message.strip():
            raise ValueError("message is required")
        settings = settings or SearchSettings()

        found = await self.retrieval.search(
            campaign_id,
            message,
            limit=settings.result_limit,
            similarity_threshold=settings.similarity_threshold,
            exclude_restricted=not privileged,
        )
        response = ChatResponse(
            content=None,
            sources=found.results,
            mode=mode,
            search_mode=found.mode,
            degraded=found.degraded,
        )
        if mode == "direct":
            return response
        if self.client is None:
            raise ChatError("Chat model is not configured")

        system = build_chat_system_prompt(
            build_context(found.results), campaign_id, custom_prompts
        )
        messages = [
            {"role": m.role, "content": m.content} for m in list(history)[-HISTORY_LIMIT:]
        ]
        messages.append({"role": "user", "content": message})

        try:
            reply = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system,
                messages=messages,
            )
        except APIError as exc:
            logger.error("Chat completion failed for campaign %s: %s", campaign_id, exc)
            raise ChatError(f"Chat model request failed: {exc}") from exc

        text = "".join(
            block.text for block in reply.content if getattr(block, "type", "") == "text"
        ).strip()
        response.content = text or FALLBACK_ANSWER
        logger.debug(
            "chat campaign=%s sources=%d history=%d", campaign_id, len(found.results), len(messages) - 1
        )
        return response
