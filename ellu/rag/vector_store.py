"""
ChromaDB Vector Store

Stores course chunks with OpenAI embeddings in a single Chroma collection.

Client selection:
1. Chroma Cloud when CHROMADB_API_KEY and CHROMADB_TENANT are set
2. A Chroma server when CHROMADB_URL is set
3. A local persistent client otherwise

Usage:
    from ellu.rag.vector_store import CourseVectorStore

    store = CourseVectorStore()
    store.add_chunks(chunks)
    for chunk, score in store.search("how to true a dart", limit=5):
        print(chunk.section, score)
"""

import os
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import chromadb
from chromadb.config import Settings
from chromadb.utils import embedding_functions

from .chunking import DocumentChunk

logger = logging.getLogger(__name__)

METADATA_FIELDS = ("title", "type", "course_number", "module_number", "author", "last_modified")


class CourseVectorStore:
    """ChromaDB-backed similarity search over DocumentChunks"""

    def __init__(
        self,
        collection_name: str = None,
        client: Optional[Any] = None,
        embedding_function: Optional[Any] = None,
        batch_size: int = None,
        distance_metric: str = None
    ):
        from config import settings

        vs = settings.vector_store
        self.collection_name = collection_name or vs.collection_name
        self.batch_size = batch_size or settings.embeddings.batch_size
        self.distance_metric = distance_metric or vs.distance_metric

        self._client = client if client is not None else self._create_client()
        self._embedding_fn = (
            embedding_function if embedding_function is not None
            else self._create_embedding_function()
        )
        self._collection = self._get_or_create_collection()

        logger.info(
            f"Vector store ready: {self.collection_name} ({self._collection.count()} vectors)"
        )

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    @staticmethod
    def _create_client():
        from config import settings

        vs = settings.vector_store
        api_key = os.getenv("CHROMADB_API_KEY")

        if api_key and vs.tenant:
            logger.info(f"Connecting to Chroma Cloud tenant {vs.tenant}/{vs.database}")
            return chromadb.CloudClient(
                tenant=vs.tenant,
                database=vs.database,
                api_key=api_key
            )

        if vs.url:
            parsed = urlparse(vs.url)
            logger.info(f"Connecting to Chroma server at {vs.url}")
            return chromadb.HttpClient(
                host=parsed.hostname or "localhost",
                port=parsed.port or (443 if parsed.scheme == "https" else 8000),
                ssl=parsed.scheme == "https",
                settings=Settings(anonymized_telemetry=False)
            )

        persist_directory = Path(vs.persist_directory)
        persist_directory.mkdir(parents=True, exist_ok=True)
        return chromadb.PersistentClient(
            path=str(persist_directory),
            settings=Settings(
                anonymized_telemetry=False,
                allow_reset=True
            )
        )

    @staticmethod
    def _create_embedding_function():
        """OpenAI embeddings through Chroma's embedding function"""
        from config import settings

        return embedding_functions.OpenAIEmbeddingFunction(
            api_key=os.getenv("OPENAI_API_KEY"),
            model_name=settings.embeddings.model
        )

    def _get_or_create_collection(self):
        return self._client.get_or_create_collection(
            name=self.collection_name,
            embedding_function=self._embedding_fn,
            metadata={
                "description": "ELLU Studios course knowledge",
                "hnsw:space": self.distance_metric,
            }
        )

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _to_metadata(chunk: DocumentChunk) -> Dict[str, Any]:
        metadata = {
            "section": chunk.section,
            "source": chunk.source,
            "content": chunk.content,
        }
        for key in METADATA_FIELDS:
            value = chunk.metadata.get(key)
            # Chroma metadata values must be scalars
            if value is not None:
                metadata[key] = value
        return metadata

    @staticmethod
    def _from_metadata(chunk_id: str, metadata: Dict[str, Any]) -> DocumentChunk:
        content = metadata.get("content", "")
        chunk_metadata = {key: metadata.get(key) for key in METADATA_FIELDS}
        chunk_metadata["length"] = len(content)
        return DocumentChunk(
            id=chunk_id,
            content=content,
            source=metadata.get("source", ""),
            section=metadata.get("section", "Untitled Section"),
            metadata=chunk_metadata,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_chunks(self, chunks: List[DocumentChunk]) -> int:
        """Upsert chunks in batches, returning the number of vectors written"""
        written = 0
        for i in range(0, len(chunks), self.batch_size):
            batch = chunks[i:i + self.batch_size]
            self._collection.upsert(
                ids=[chunk.id for chunk in batch],
                documents=[chunk.to_embedding_text() for chunk in batch],
                metadatas=[self._to_metadata(chunk) for chunk in batch]
            )
            written += len(batch)
            logger.debug(f"Upserted batch {i // self.batch_size + 1} ({len(batch)} chunks)")

        if written:
            logger.info(f"Upserted {written} vectors into {self.collection_name}")
        return written

    def delete_chunks(self, chunk_ids: List[str]) -> int:
        if not chunk_ids:
            return 0
        self._collection.delete(ids=list(chunk_ids))
        logger.info(f"Deleted {len(chunk_ids)} vectors from {self.collection_name}")
        return len(chunk_ids)

    def clear(self) -> None:
        """Drop and recreate the collection"""
        self._client.delete_collection(name=self.collection_name)
        self._collection = self._get_or_create_collection()
        logger.info(f"Cleared collection {self.collection_name}")

    def rebuild(self, chunks: List[DocumentChunk]) -> int:
        """Make the collection hold exactly chunks.

        New vectors are upserted before stale ids are deleted, so a failed
        embedding call leaves the previous vectors searchable.
        """
        written = self.add_chunks(chunks)
        keep = {chunk.id for chunk in chunks}
        self.delete_chunks([cid for cid in self.get_ids() if cid not in keep])
        return written

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def count(self) -> int:
        return self._collection.count()

    def get_ids(self) -> List[str]:
        return list(self._collection.get(include=[])["ids"])

    def search(
        self,
        query: str,
        limit: int = 8,
        min_relevance: float = 0.0,
        where: Optional[Dict] = None
    ) -> List[Tuple[DocumentChunk, float]]:
        """
        Similarity search.

        Returns:
            (chunk, similarity) pairs, best first, with similarity = 1 - distance
        """
        total = self._collection.count()
        if total == 0:
            return []

        results = self._collection.query(
            query_texts=[query],
            n_results=min(limit, total),
            where=where,
            include=["metadatas", "distances"]
        )

        matches = []
        ids = results.get("ids", [[]])[0]
        metadatas = results.get("metadatas", [[]])[0]
        distances = results.get("distances", [[]])[0]

        for chunk_id, metadata, distance in zip(ids, metadatas, distances):
            similarity = 1 - distance
            if similarity < min_relevance:
                continue
            matches.append((self._from_metadata(chunk_id, metadata or {}), similarity))

        return matches

    def get_collection_info(self) -> Dict[str, Any]:
        return {
            "name": self.collection_name,
            "count": self._collection.count(),
            "distance_metric": self.distance_metric,
        }

    def health_check(self) -> Dict[str, Any]:
        try:
            self._client.heartbeat()
            return {"healthy": True, "vectors": self._collection.count()}
        except Exception as e:
            logger.warning(f"Vector store health check failed: {e}")
            return {"healthy": False, "error": str(e)}
