"""Local FAISS vector store for development and tests.

Handles:
- HNSW index over L2-normalized vectors (inner product == cosine similarity)
- Row storage and chunk_id upserts in SQLite
- Index rebuilds when upserts overwrite existing chunks
- Index and metadata persistence
"""
import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

import faiss
import numpy as np
import structlog

from dochelper import config, db
from dochelper.errors import SchemaProvisionError, StoreQueryError
from dochelper.rag.store import (
    Chunk,
    SearchFilter,
    SearchResult,
    VectorStore,
    dedupe_chunks,
)

logger = structlog.get_logger()

INDEX_TYPE = "IndexHNSWFlat"


def _as_matrix(vectors: List[List[float]]) -> np.ndarray:
    matrix = np.array(vectors, dtype=np.float32)
    faiss.normalize_L2(matrix)
    return matrix


def _to_blob(embedding: List[float]) -> bytes:
    return np.asarray(embedding, dtype=np.float32).tobytes()


def _from_blob(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float32)


class FaissVectorStore(VectorStore):
    """FAISS HNSW index with SQLite rows, persisted under ``index_dir``."""

    backend = "faiss"

    def __init__(
        self,
        index_dir: Optional[Path] = None,
        dimension: Optional[int] = None,
        hnsw_m: Optional[int] = None,
        ef_search: int = 64,
    ):
        """Initialize the FAISS vector store.

        Args:
            index_dir: Directory for index, metadata and SQLite file (default: DATA_DIR)
            dimension: Embedding dimension (default from config)
            hnsw_m: HNSW graph degree (default from config)
            ef_search: Minimum HNSW search breadth
        """
        super().__init__(dimension)
        self.index_dir = Path(index_dir or config.DATA_DIR)
        self.hnsw_m = config.HNSW_M if hnsw_m is None else hnsw_m
        self.ef_search = ef_search

        self.index_path = self.index_dir / "vectors.index"
        self.metadata_path = self.index_dir / "metadata.json"
        self.db_path = self.index_dir / "chunks.sqlite"

        self.index: Optional[faiss.Index] = None
        self.metadata: Dict[str, Any] = {}

        logger.info(
            "faiss_store_initialized",
            index_dir=str(self.index_dir),
            dimension=self.dimension,
        )

    def _new_index(self) -> faiss.Index:
        index = faiss.IndexHNSWFlat(self.dimension, self.hnsw_m, faiss.METRIC_INNER_PRODUCT)
        index.hnsw.efConstruction = config.HNSW_EF_CONSTRUCTION
        return index

    def _require_index(self) -> faiss.Index:
        if self.index is None:
            raise RuntimeError("No index initialized. Call ensure_schema() first.")
        return self.index

    async def ensure_schema(self) -> None:
        """Create tables and load, or rebuild, the HNSW index.

        A persisted index built for another dimension is a provisioning error.
        A missing or stale index is rebuilt from the stored rows.
        """
        if self.index is not None:
            return

        try:
            self.index_dir.mkdir(parents=True, exist_ok=True)
            db.init_database(self.db_path)
            row_count = db.get_chunk_count(self.db_path)
        except (OSError, sqlite3.Error) as e:
            raise SchemaProvisionError(f"Failed to initialize local store: {e}") from e

        if self.index_path.exists() and self.metadata_path.exists():
            self._load_index()
            if self.index.ntotal == row_count:
                return
            logger.warning(
                "faiss_index_stale",
                vector_count=self.index.ntotal,
                row_count=row_count,
            )

        self._rebuild_from_rows()
        self._save_index()

    def _load_index(self) -> None:
        try:
            with open(self.metadata_path, "r") as f:
                metadata = json.load(f)
        except (OSError, ValueError) as e:
            raise SchemaProvisionError(f"Failed to load index metadata: {e}") from e

        stored_dim = metadata.get("embedding_dimension")
        if stored_dim != self.dimension:
            raise SchemaProvisionError(
                f"Dimension mismatch: index was built with dim={stored_dim}, "
                f"but the store is configured for dim={self.dimension}. "
                f"Remove {self.index_dir} to rebuild."
            )

        try:
            self.index = faiss.read_index(str(self.index_path))
        except RuntimeError as e:
            raise SchemaProvisionError(f"Failed to load FAISS index: {e}") from e

        self.metadata = metadata
        logger.info(
            "faiss_index_loaded",
            dimension=self.dimension,
            vector_count=self.index.ntotal,
        )

    def _rebuild_from_rows(self) -> None:
        """Rebuild the HNSW graph from every stored row and renumber vector IDs.

        HNSW graphs cannot drop vectors, so overwritten rows force a rebuild.
        """
        rows = db.get_all_embeddings(self.db_path)
        index = self._new_index()
        if rows:
            matrix = np.vstack([_from_blob(blob) for _, blob in rows]).astype(np.float32)
            faiss.normalize_L2(matrix)
            index.add(matrix)
            db.assign_vector_ids(
                self.db_path,
                [(position, row_id) for position, (row_id, _) in enumerate(rows)],
            )

        self.index = index
        logger.info("faiss_index_rebuilt", vector_count=index.ntotal)

    def _save_index(self) -> None:
        index = self._require_index()
        self.metadata = {
            "embedding_dimension": self.dimension,
            "index_type": INDEX_TYPE,
            "metric": "inner_product",
            "hnsw_m": self.hnsw_m,
            "vector_count": index.ntotal,
        }
        try:
            faiss.write_index(index, str(self.index_path))
            with open(self.metadata_path, "w") as f:
                json.dump(self.metadata, f, indent=2)
        except (OSError, RuntimeError) as e:
            raise StoreQueryError(f"Failed to save FAISS index: {e}") from e

    async def upsert(self, chunks: List[Chunk]) -> None:
        index = self._require_index()
        if not chunks:
            return

        chunks = dedupe_chunks(chunks)
        for chunk in chunks:
            self._check_dimension(chunk.embedding)

        try:
            existing = db.get_vector_ids(self.db_path, [c.chunk_id for c in chunks])
            new_chunks = [c for c in chunks if c.chunk_id not in existing]

            next_id = index.ntotal
            new_ids = {c.chunk_id: next_id + i for i, c in enumerate(new_chunks)}
            db.upsert_chunks(
                self.db_path,
                [
                    (
                        c.source_url,
                        c.chunk_id,
                        c.content,
                        _to_blob(c.embedding),
                        new_ids.get(c.chunk_id, existing.get(c.chunk_id)),
                    )
                    for c in chunks
                ],
            )

            if existing:
                self._rebuild_from_rows()
            elif new_chunks:
                index.add(_as_matrix([c.embedding for c in new_chunks]))
        except sqlite3.Error as e:
            logger.error("upsert_failed", rows=len(chunks), error=str(e))
            raise StoreQueryError(f"Upsert failed: {e}") from e

        self._save_index()
        logger.info(
            "vectors_upserted",
            inserted=len(new_chunks),
            overwritten=len(existing),
            total_vectors=self.index.ntotal,
        )

    async def query(
        self,
        embedding: List[float],
        limit: int,
        filters: Optional[SearchFilter] = None,
    ) -> List[SearchResult]:
        index = self._require_index()
        self._check_dimension(embedding)

        if limit <= 0 or index.ntotal == 0:
            return []

        query_vector = _as_matrix([embedding])

        try:
            if filters is None or filters.is_empty:
                results = self._search_index(index, query_vector, limit)
            else:
                results = self._scan_filtered(query_vector, limit, filters)
        except sqlite3.Error as e:
            logger.error("vector_query_failed", error=str(e))
            raise StoreQueryError(f"Vector query failed: {e}") from e

        results.sort(key=lambda r: r.distance)

        logger.info(
            "vector_search_completed",
            top_k=limit,
            results_found=len(results),
            filtered=filters is not None and not filters.is_empty,
        )
        return results

    def _search_index(self, index: faiss.Index, query_vector: np.ndarray, limit: int) -> List[SearchResult]:
        top_k = min(limit, index.ntotal)
        index.hnsw.efSearch = max(self.ef_search, top_k)
        similarities, positions = index.search(query_vector, top_k)

        hits = [
            (int(position), float(similarity))
            for position, similarity in zip(positions[0], similarities[0])
            if position >= 0
        ]
        rows = {
            row["vector_id"]: row
            for row in db.get_chunks_by_vector_ids(self.db_path, [p for p, _ in hits])
        }

        results = []
        for position, similarity in hits:
            row = rows.get(position)
            if row is None:
                logger.warning("vector_id_not_found_in_database", vector_id=position)
                continue
            results.append(
                SearchResult(
                    source_url=row["source_url"],
                    content=row["content"],
                    distance=max(0.0, 1.0 - similarity),
                )
            )
        return results

    def _scan_filtered(
        self, query_vector: np.ndarray, limit: int, filters: SearchFilter
    ) -> List[SearchResult]:
        """Exact cosine scan over the rows that pass the filter."""
        rows = db.get_chunks_matching(
            self.db_path,
            host_pattern=filters.host_pattern,
            source_prefix=filters.source_prefix,
        )
        if not rows:
            return []

        matrix = np.vstack([_from_blob(row["embedding"]) for row in rows]).astype(np.float32)
        faiss.normalize_L2(matrix)
        similarities = matrix @ query_vector[0]
        order = np.argsort(-similarities, kind="stable")[:limit]

        return [
            SearchResult(
                source_url=rows[i]["source_url"],
                content=rows[i]["content"],
                distance=max(0.0, 1.0 - float(similarities[i])),
            )
            for i in order
        ]

    async def count(self) -> int:
        try:
            return db.get_chunk_count(self.db_path)
        except sqlite3.Error as e:
            raise StoreQueryError(f"Count failed: {e}") from e
