"""
Streaming responder.

Relays text fragments from the generation model to the HTTP caller as
they arrive. Streaming answers come from the bare question: no retrieval
and no chat history are involved (buffered /ask is the RAG path).

Lifecycle of one stream:
1. start() opens the model stream and waits for the first fragment. A
   failure here has produced no output yet, so it propagates and the view
   answers with a JSON error.
2. The returned relay yields one encoded fragment per write.
3. If the caller disconnects, Django cancels the response and closes the
   relay; the relay closes the model stream, so no further fragments are
   requested.
4. A model failure after output has started ends the stream. Fragments
   already sent cannot be taken back.
"""
import logging
from contextlib import aclosing
from typing import AsyncIterator, Optional

from apps.rag.errors import RAGError
from apps.rag.llm_client import BaseLLMClient, LLMMessage

logger = logging.getLogger(__name__)


class StreamingResponder:
    """Relays model fragments to the caller without buffering."""

    def __init__(self, llm: BaseLLMClient):
        self.llm = llm

    async def start(self, question: str) -> AsyncIterator[bytes]:
        """
        Open a model stream for a question.

        Args:
            question: The normalized user question

        Returns:
            Async iterator of UTF-8 encoded fragments

        Raises:
            RAGError: If the model fails before producing any fragment
        """
        fragments = self.llm.stream([LLMMessage(role="user", content=question)])

        try:
            first: Optional[str] = await anext(fragments)
        except StopAsyncIteration:
            first = None
        except BaseException:
            await fragments.aclose()
            raise

        return self._relay(first, fragments)

    async def _relay(
        self,
        first: Optional[str],
        fragments: AsyncIterator[str],
    ) -> AsyncIterator[bytes]:
        sent = 0
        completed = False

        async with aclosing(fragments):
            try:
                if first is not None:
                    sent += 1
                    yield first.encode('utf-8')

                async for fragment in fragments:
                    sent += 1
                    yield fragment.encode('utf-8')

                completed = True

            except RAGError as e:
                logger.error(
                    f"Stream failed after {sent} fragments, closing response: "
                    f"[{e.kind.value}] {e.message}"
                )

            finally:
                if completed:
                    logger.info(f"Stream completed: {sent} fragments")
                else:
                    logger.info(f"Stream ended early after {sent} fragments")
