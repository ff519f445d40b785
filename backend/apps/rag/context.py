"""
Context assembly for RAG generation.

Combines the chat transcript, the retrieved chunks and the new question
into the prompt sent to the generation model.
"""
import logging
from dataclasses import dataclass
from typing import List, Sequence

from apps.chats.store import ConversationTurn
from apps.rag.llm_client import LLMMessage
from apps.rag.retrieval import RetrievalResult

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = "You are a helpful AI assistant. Use ONLY the provided context."

HUMAN_PROMPT = """
Chat History:
{history}

Context:
{context}

Question:
{question}

Answer clearly:"""


@dataclass(frozen=True)
class PromptContext:
    """The three ordered text blocks of a generation request."""
    history: str
    context: str
    question: str

    def to_messages(self) -> List[LLMMessage]:
        """Render the system and human messages for the model."""
        return [
            LLMMessage(role="system", content=SYSTEM_PROMPT),
            LLMMessage(
                role="user",
                content=HUMAN_PROMPT.format(
                    history=self.history,
                    context=self.context,
                    question=self.question,
                ),
            ),
        ]


def render_history(turns: Sequence[ConversationTurn]) -> str:
    """
    Render a transcript as "<role>: <text>" lines.

    Turns are sorted by created_at; the sort is stable, so turns sharing a
    timestamp keep the order they were loaded in.
    """
    ordered = sorted(turns, key=lambda t: t.created_at)
    return "\n".join(f"{t.role}: {t.text}" for t in ordered)


def render_context(results: Sequence[RetrievalResult]) -> str:
    """Join chunk texts with a blank line, in the order given."""
    return "\n\n".join(r.chunk.text for r in results)


def assemble(
    question: str,
    history_turns: Sequence[ConversationTurn],
    results: Sequence[RetrievalResult],
) -> PromptContext:
    """
    Build the prompt context for one question.

    No filtering is applied to the retrieved text. With zero results the
    context block is empty and generation proceeds on history and
    question alone.

    Args:
        question: The raw user question
        history_turns: Prior turns of the chat
        results: Retrieved chunks, already in descending score order

    Returns:
        PromptContext with history, context and question blocks
    """
    prompt = PromptContext(
        history=render_history(history_turns),
        context=render_context(results),
        question=question,
    )

    if not results:
        logger.info("No retrieved context, answering from history and question only")

    logger.debug(
        f"Assembled prompt: {len(history_turns)} history turns, "
        f"{len(results)} chunks, context {len(prompt.context)} chars"
    )
    return prompt
