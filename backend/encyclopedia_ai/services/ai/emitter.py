"""
Final-answer emission.

Two modes share one event contract (``chunk``... then one ``answer``):
- live: tokens come from a streaming completion as they arrive
- replay: text already in hand is chunked deterministically and paced, so
  a reply that carried a malformed directive is not paid for twice
"""
import asyncio
import re
from typing import List, Optional, Sequence

from encyclopedia_ai.core.logging import get_logger
from encyclopedia_ai.services.ai.prompts import FALLBACK_ANSWER
from encyclopedia_ai.services.ai.schema import (
    AnswerEvent,
    ArticleLink,
    ChunkEvent,
    EventSink,
    Message,
)

logger = get_logger(__name__)

REPLAY_PARTS_PER_CHUNK = 4


def replay_chunks(text: str, parts_per_chunk: int = REPLAY_PARTS_PER_CHUNK) -> List[str]:
    """
    Split text into chunks of ``parts_per_chunk`` word/whitespace parts.

    Concatenating the chunks gives back ``text`` exactly.
    """
    parts = re.split(r"(\s+)", text)
    chunks = []
    for start in range(0, len(parts), parts_per_chunk):
        chunk = "".join(parts[start:start + parts_per_chunk])
        if chunk:
            chunks.append(chunk)
    return chunks


class AnswerEmitter:
    """Emits the terminal answer of a run, either live or replayed."""

    def __init__(
        self,
        completion_client,
        emit: EventSink,
        max_tokens: int = 1500,
        temperature: float = 0.65,
        replay_delay_seconds: float = 0.006,
    ):
        self.completion_client = completion_client
        self.emit = emit
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.replay_delay_seconds = replay_delay_seconds

    async def stream_live(
        self,
        messages: List[Message],
        article_links: Sequence[ArticleLink],
    ) -> str:
        """
        Stream the answer from the model; always ends with an ``answer`` event.

        If the stream fails before any token arrived, a fallback sentence is
        sent as a single chunk. Partial text otherwise stands as the answer.
        """
        parts: List[str] = []

        def on_token(token: str) -> None:
            parts.append(token)
            self.emit(ChunkEvent(content=token))

        try:
            await self.completion_client.stream(
                messages,
                on_token,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except Exception as exc:
            logger.error(
                "agent_answer_stream_failed",
                error=str(exc),
                error_type=type(exc).__name__,
                chars_received=sum(len(p) for p in parts),
            )

        text = "".join(parts)
        if not text:
            text = FALLBACK_ANSWER
            self.emit(ChunkEvent(content=text))
        else:
            logger.info("agent_answer_streamed", chars=len(text))

        self._emit_answer(text, article_links)
        return text

    async def replay(self, text: str, article_links: Sequence[ArticleLink]) -> str:
        for chunk in replay_chunks(text):
            self.emit(ChunkEvent(content=chunk))
            await asyncio.sleep(self.replay_delay_seconds)
        logger.info("agent_answer_replayed", chars=len(text))
        self._emit_answer(text, article_links)
        return text

    def _emit_answer(self, text: str, article_links: Optional[Sequence[ArticleLink]]) -> None:
        self.emit(AnswerEvent(content=text, article_links=list(article_links or [])))
