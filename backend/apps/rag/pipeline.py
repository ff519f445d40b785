"""
RAG pipeline orchestrator.

Runs one question through a fixed sequence of stages:

    RECEIVED -> EMBEDDING -> RETRIEVING -> ASSEMBLING -> GENERATING
             -> PERSISTING -> DONE

Any of the first five stages can fail into ERROR. Stages never run
concurrently or out of order, and no stage is retried here.

Persistence rules:
- The user's question is stored on RECEIVED, before any external call.
  A later failure leaves it in place, so the chat still shows the question.
- The assistant answer is stored only in PERSISTING, so a failed request
  never leaves a partial assistant turn.
"""
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List

from apps.chats.models import MessageRole
from apps.chats.store import ConversationTurn, MessageStore
from apps.rag.context import PromptContext, assemble
from apps.rag.embeddings import EmbeddingGateway
from apps.rag.errors import RAGError
from apps.rag.llm_client import BaseLLMClient
from apps.rag.retrieval import RetrievalResult, Retriever

logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    """States of one pipeline run."""
    RECEIVED = 'RECEIVED'
    EMBEDDING = 'EMBEDDING'
    RETRIEVING = 'RETRIEVING'
    ASSEMBLING = 'ASSEMBLING'
    GENERATING = 'GENERATING'
    PERSISTING = 'PERSISTING'
    DONE = 'DONE'
    ERROR = 'ERROR'


@dataclass
class PipelineRequest:
    """Input to one pipeline run."""
    owner_id: str
    chat_id: str
    question: str
    history_turns: List[ConversationTurn] = field(default_factory=list)


@dataclass
class PipelineResult:
    """Output of a successful pipeline run."""
    answer: str
    model: str
    results: List[RetrievalResult]
    prompt: PromptContext
    stages: List[PipelineStage]

    @property
    def chunk_count(self) -> int:
        return len(self.results)


class RAGPipeline:
    """
    Orchestrates embed -> retrieve -> assemble -> generate -> persist.

    All collaborators are injected; the pipeline holds no state between
    runs and is safe to share across concurrent requests.
    """

    def __init__(
        self,
        gateway: EmbeddingGateway,
        retriever: Retriever,
        llm: BaseLLMClient,
        store: MessageStore,
    ):
        self.gateway = gateway
        self.retriever = retriever
        self.llm = llm
        self.store = store

    async def run(self, request: PipelineRequest) -> PipelineResult:
        """
        Answer one question with retrieval-augmented generation.

        Args:
            request: Owner, chat, question and the chat's prior turns

        Returns:
            PipelineResult with the generated answer

        Raises:
            RAGError: The taxonomy error of the failed stage, with
                `stage` set to the stage that failed
        """
        stages: List[PipelineStage] = []
        stage = PipelineStage.RECEIVED
        started = time.monotonic()

        def enter(next_stage: PipelineStage) -> PipelineStage:
            stages.append(next_stage)
            logger.debug(f"Pipeline chat={request.chat_id} -> {next_stage.value}")
            return next_stage

        try:
            stage = enter(PipelineStage.RECEIVED)
            await self.store.append_turn(
                request.chat_id, request.owner_id, MessageRole.USER, request.question
            )

            stage = enter(PipelineStage.EMBEDDING)
            query_vector = await self.gateway.embed(request.question)

            stage = enter(PipelineStage.RETRIEVING)
            results = await self.retriever.retrieve(request.owner_id, query_vector)

            stage = enter(PipelineStage.ASSEMBLING)
            prompt = assemble(request.question, request.history_turns, results)

            stage = enter(PipelineStage.GENERATING)
            response = await self.llm.chat(prompt.to_messages())

        except RAGError as e:
            e.stage = stage.value
            stages.append(PipelineStage.ERROR)
            logger.error(
                f"Pipeline failed at {stage.value} for chat {request.chat_id}: "
                f"[{e.kind.value}] {e.message}"
            )
            raise

        stage = enter(PipelineStage.PERSISTING)
        try:
            await self.store.append_turn(
                request.chat_id, request.owner_id, MessageRole.ASSISTANT, response.content
            )
            await self.store.touch_chat(request.chat_id)
        except RAGError as e:
            e.stage = stage.value
            logger.error(f"Failed to persist answer for chat {request.chat_id}: {e.message}")
            raise

        enter(PipelineStage.DONE)
        elapsed_ms = (time.monotonic() - started) * 1000
        logger.info(
            f"Answered question for chat {request.chat_id} with {len(results)} chunks "
            f"in {elapsed_ms:.0f}ms"
        )

        return PipelineResult(
            answer=response.content,
            model=response.model,
            results=results,
            prompt=prompt,
            stages=stages,
        )
