"""
Capability wiring.

The embedding gateway, vector index, LLM client and message store are
built once per process from settings and handed to the components that
need them. Views reach them only through get_services(); tests swap in
doubles with set_services().
"""
import logging
from dataclasses import dataclass
from typing import Optional

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from apps.chats.store import DjangoMessageStore, MessageStore
from apps.indexing.pipeline import IngestPipeline
from apps.rag.embeddings import EmbeddingGateway, build_embedding_gateway
from apps.rag.llm_client import BaseLLMClient, build_llm_client
from apps.rag.pipeline import RAGPipeline
from apps.rag.retrieval import InMemoryVectorIndex, PgVectorIndex, Retriever, VectorIndex
from apps.rag.streaming import StreamingResponder

logger = logging.getLogger(__name__)


@dataclass
class RAGServices:
    """Process-wide capability objects and the components built on them."""
    gateway: EmbeddingGateway
    index: VectorIndex
    llm: BaseLLMClient
    store: MessageStore
    retriever: Retriever
    pipeline: RAGPipeline
    responder: StreamingResponder
    ingest: IngestPipeline

    @classmethod
    def build(
        cls,
        gateway: EmbeddingGateway,
        index: VectorIndex,
        llm: BaseLLMClient,
        store: MessageStore,
    ) -> 'RAGServices':
        """Assemble the components around the four capabilities."""
        retriever = Retriever(
            index=index,
            dimension=settings.EMBEDDING_DIMENSION,
            top_k=settings.RETRIEVAL_TOP_K,
        )
        return cls(
            gateway=gateway,
            index=index,
            llm=llm,
            store=store,
            retriever=retriever,
            pipeline=RAGPipeline(gateway, retriever, llm, store),
            responder=StreamingResponder(llm),
            ingest=IngestPipeline(
                gateway,
                index,
                chunk_size=settings.CHUNK_SIZE,
                chunk_overlap=settings.CHUNK_OVERLAP,
                retry_config=settings.INGEST_EMBED_RETRY,
            ),
        )


def build_vector_index() -> VectorIndex:
    """
    Build the vector index from VECTOR_STORE_BACKEND.

    - "pgvector": doc_chunks table with the HNSW cosine index
    - "memory": in-process index (development without PostgreSQL)
    """
    backend = getattr(settings, 'VECTOR_STORE_BACKEND', 'pgvector').lower()

    if backend == 'pgvector':
        logger.info("Using pgvector index")
        return PgVectorIndex()

    if backend == 'memory':
        logger.warning("Using in-memory vector index; indexed chunks are lost on restart")
        return InMemoryVectorIndex()

    raise ImproperlyConfigured(f"Unknown VECTOR_STORE_BACKEND: {backend}")


_services: Optional[RAGServices] = None


def get_services() -> RAGServices:
    """Get the process-wide services (built on first use)."""
    global _services
    if _services is None:
        _services = RAGServices.build(
            gateway=build_embedding_gateway(),
            index=build_vector_index(),
            llm=build_llm_client(),
            store=DjangoMessageStore(),
        )
    return _services


def set_services(services: Optional[RAGServices]) -> None:
    """Replace the process-wide services (None rebuilds them on next use)."""
    global _services
    _services = services
