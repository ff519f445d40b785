"""
Tests for the RAG pipeline orchestrator.
"""
import pytest

from apps.rag.embeddings import EmbeddingError
from apps.rag.errors import ErrorKind, StorageError
from apps.rag.llm_client import LLMError
from apps.rag.pipeline import PipelineRequest, PipelineStage, RAGPipeline
from apps.rag.retrieval import ChunkRecord, InMemoryVectorIndex, Retriever
from tests.conftest import (
    TEST_DIMENSION,
    FakeEmbeddingGateway,
    FakeLLMClient,
    InMemoryMessageStore,
    letter_vector,
)


def make_pipeline(gateway=None, index=None, llm=None, store=None):
    gateway = gateway if gateway is not None else FakeEmbeddingGateway()
    index = index if index is not None else InMemoryVectorIndex()
    llm = llm if llm is not None else FakeLLMClient()
    store = store if store is not None else InMemoryMessageStore()
    store.add_chat('chat-1', 'u1')
    retriever = Retriever(index, dimension=TEST_DIMENSION, top_k=3)
    return RAGPipeline(gateway, retriever, llm, store), gateway, index, llm, store


def request(question="What is pgvector?", history=None):
    return PipelineRequest(owner_id='u1', chat_id='chat-1', question=question, history_turns=history or [])


# ============================================================================
# Happy Path
# ============================================================================

class TestPipelineRun:

    @pytest.mark.asyncio
    async def test_stages_in_order(self):
        pipeline, *_ = make_pipeline()

        result = await pipeline.run(request())

        assert result.stages == [
            PipelineStage.RECEIVED,
            PipelineStage.EMBEDDING,
            PipelineStage.RETRIEVING,
            PipelineStage.ASSEMBLING,
            PipelineStage.GENERATING,
            PipelineStage.PERSISTING,
            PipelineStage.DONE,
        ]

    @pytest.mark.asyncio
    async def test_persists_user_then_assistant(self):
        pipeline, _, _, llm, store = make_pipeline(llm=FakeLLMClient(answer="It is an extension."))

        result = await pipeline.run(request())

        assert result.answer == "It is an extension."
        assert [(t.role, t.text) for t in store.turns] == [
            ('user', 'What is pgvector?'),
            ('assistant', 'It is an extension.'),
        ]
        assert store.touched == ['chat-1']

    @pytest.mark.asyncio
    async def test_retrieved_chunks_reach_the_prompt(self):
        index = InMemoryVectorIndex()
        await index.add([
            ChunkRecord('d1', 'u1', 0, 'pgvector adds vector types', letter_vector('pgvector adds vector types')),
            ChunkRecord('d2', 'u2', 0, 'someone else', letter_vector('What is pgvector?')),
        ])
        pipeline, _, _, llm, _ = make_pipeline(index=index)

        result = await pipeline.run(request())

        assert result.chunk_count == 1
        prompt_text = llm.chat_calls[0][1].content
        assert 'pgvector adds vector types' in prompt_text
        assert 'someone else' not in prompt_text

    @pytest.mark.asyncio
    async def test_empty_index_still_answers(self):
        pipeline, gateway, _, llm, _ = make_pipeline()

        result = await pipeline.run(request())

        assert result.answer == "Generated answer"
        assert result.results == []
        assert result.prompt.context == ""
        assert len(llm.chat_calls) == 1

    @pytest.mark.asyncio
    async def test_embeds_even_without_history(self):
        pipeline, gateway, *_ = make_pipeline()

        await pipeline.run(request(history=[]))

        assert gateway.calls == ['What is pgvector?']

    @pytest.mark.asyncio
    async def test_history_is_rendered(self):
        store = InMemoryMessageStore()
        pipeline, _, _, llm, store = make_pipeline(store=store)
        earlier_q = await store.append_turn('chat-1', 'u1', 'user', 'earlier question')
        earlier_a = await store.append_turn('chat-1', 'u1', 'assistant', 'earlier answer')

        result = await pipeline.run(request(history=[earlier_a, earlier_q]))

        assert result.prompt.history == "user: earlier question\nassistant: earlier answer"


# ============================================================================
# Failures
# ============================================================================

class TestPipelineFailures:

    @pytest.mark.asyncio
    async def test_generation_failure_keeps_user_turn_only(self):
        pipeline, _, _, _, store = make_pipeline(llm=FakeLLMClient(fail_chat=True))

        with pytest.raises(LLMError) as exc:
            await pipeline.run(request())

        assert exc.value.kind is ErrorKind.UPSTREAM
        assert exc.value.stage == 'GENERATING'
        assert [t.role for t in store.turns] == ['user']
        assert store.touched == []

    @pytest.mark.asyncio
    async def test_embedding_failure_is_not_retried(self):
        gateway = FakeEmbeddingGateway(failures=[EmbeddingError("Embedding service timed out")])
        pipeline, _, _, llm, store = make_pipeline(gateway=gateway)

        with pytest.raises(EmbeddingError) as exc:
            await pipeline.run(request())

        assert exc.value.stage == 'EMBEDDING'
        assert len(gateway.calls) == 1
        assert llm.chat_calls == []
        assert [t.role for t in store.turns] == ['user']

    @pytest.mark.asyncio
    async def test_retrieval_storage_failure(self):
        class BrokenIndex(InMemoryVectorIndex):
            async def search(self, owner_id, query_vector, top_k):
                raise StorageError("Vector search failed")

        pipeline, *_ = make_pipeline(index=BrokenIndex())

        with pytest.raises(StorageError) as exc:
            await pipeline.run(request())

        assert exc.value.stage == 'RETRIEVING'

    @pytest.mark.asyncio
    async def test_persist_failure_reports_stage(self):
        class FailingStore(InMemoryMessageStore):
            async def append_turn(self, chat_id, owner_id, role, text):
                if role == 'assistant':
                    raise StorageError("Failed to save message")
                return await super().append_turn(chat_id, owner_id, role, text)

        pipeline, *_ = make_pipeline(store=FailingStore())

        with pytest.raises(StorageError) as exc:
            await pipeline.run(request())

        assert exc.value.stage == 'PERSISTING'
