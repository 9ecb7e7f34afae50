"""PostgreSQL + pgvector vector store.

Handles:
- Schema self-provisioning (extension, table, HNSW cosine index)
- Idempotent upsert keyed by chunk_id
- Filtered approximate-nearest-neighbor queries

Every operation checks a connection out of the engine's pool and returns it
on every exit path (``async with engine.begin()``).
"""
from typing import Callable, List, Optional, Tuple

import structlog
from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    BigInteger,
    Column,
    Index,
    MetaData,
    String,
    Table,
    Text,
    func,
    inspect,
    select,
    text,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.engine import URL
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from dochelper import config
from dochelper.errors import SchemaProvisionError, StoreQueryError
from dochelper.rag.store import (
    Chunk,
    SearchFilter,
    SearchResult,
    StoreErrorKind,
    VectorStore,
    dedupe_chunks,
)

logger = structlog.get_logger()

# duplicate_table (also raised for index names), duplicate_object
ALREADY_EXISTS_SQLSTATES = frozenset({"42P07", "42710"})

# pgvector's default hnsw.ef_search; HNSW scans return at most this many rows
PGVECTOR_DEFAULT_EF_SEARCH = 40


def build_table(
    name: str,
    dimension: int,
    m: int = 16,
    ef_construction: int = 64,
    metadata: Optional[MetaData] = None,
) -> Table:
    """Table definition with its HNSW cosine index attached."""
    return Table(
        name,
        metadata if metadata is not None else MetaData(),
        Column("id", BigInteger, primary_key=True, autoincrement=True),
        Column("source_url", Text, nullable=True),
        Column("chunk_id", String(64), nullable=False, unique=True),
        Column("content", Text, nullable=False),
        Column("embedding", Vector(dimension), nullable=False),
        Index(
            f"idx_{name}_embedding",
            "embedding",
            postgresql_using="hnsw",
            postgresql_with={"m": m, "ef_construction": ef_construction},
            postgresql_ops={"embedding": "vector_cosine_ops"},
        ),
    )


def build_upsert_statement(table: Table, chunks: List[Chunk]):
    """Multi-row INSERT ... ON CONFLICT (chunk_id) DO UPDATE (last writer wins)."""
    rows = [
        {
            "source_url": chunk.source_url,
            "chunk_id": chunk.chunk_id,
            "content": chunk.content,
            "embedding": chunk.embedding,
        }
        for chunk in dedupe_chunks(chunks)
    ]
    stmt = pg_insert(table).values(rows)
    return stmt.on_conflict_do_update(
        index_elements=[table.c.chunk_id],
        set_={
            "content": stmt.excluded.content,
            "embedding": stmt.excluded.embedding,
            "source_url": stmt.excluded.source_url,
        },
    )


def filter_clauses(table: Table, filters: Optional[SearchFilter]) -> list:
    """WHERE clauses for a SearchFilter; LIKE wildcards in the values are escaped."""
    if filters is None:
        return []
    clauses = []
    if filters.source_host:
        clauses.append(table.c.source_url.contains(filters.host_pattern, autoescape=True))
    if filters.source_prefix:
        clauses.append(table.c.source_url.startswith(filters.source_prefix, autoescape=True))
    return clauses


def build_query_statement(
    table: Table,
    embedding: List[float],
    limit: int,
    filters: Optional[SearchFilter] = None,
):
    """SELECT ordered by cosine distance (``<=>``) so the HNSW index applies."""
    stmt = select(
        table.c.source_url,
        table.c.content,
        table.c.embedding.cosine_distance(embedding).label("distance"),
    )
    for clause in filter_clauses(table, filters):
        stmt = stmt.where(clause)
    return stmt.order_by(table.c.embedding.cosine_distance(embedding)).limit(limit)


class PgVectorStore(VectorStore):
    """Vector store backed by PostgreSQL with the pgvector extension."""

    backend = "pgvector"

    def __init__(
        self,
        dimension: Optional[int] = None,
        table_name: Optional[str] = None,
        engine: Optional[AsyncEngine] = None,
        pool_size: Optional[int] = None,
    ):
        """Initialize the store.

        Args:
            dimension: Embedding dimension (default from config)
            table_name: Table to use (default from config)
            engine: Pre-built async engine (built from DB_* settings if omitted)
            pool_size: Connection pool size (default from config)
        """
        super().__init__(dimension)
        self.pool_size = config.DB_POOL_SIZE if pool_size is None else pool_size
        self.table = build_table(
            table_name or config.VECTOR_TABLE,
            self.dimension,
            m=config.HNSW_M,
            ef_construction=config.HNSW_EF_CONSTRUCTION,
        )
        self.embedding_index = next(iter(self.table.indexes))
        self._engine = engine if engine is not None else self._create_engine()
        self._schema_ready = False

        logger.info(
            "pgvector_store_initialized",
            table=self.table.name,
            dimension=self.dimension,
            pool_size=self.pool_size,
        )

    def _create_engine(self) -> AsyncEngine:
        url = URL.create(
            "postgresql+asyncpg",
            username=config.DB_USER,
            password=config.DB_PASSWORD or None,
            host=config.DB_HOST,
            port=config.DB_PORT,
            database=config.DB_NAME,
        )
        return create_async_engine(
            url,
            pool_size=self.pool_size,
            max_overflow=0,
            pool_pre_ping=True,
        )

    def classify_error(self, exc: BaseException) -> StoreErrorKind:
        """Map driver errors to StoreErrorKind by SQLSTATE."""
        orig = getattr(exc, "orig", None)
        candidates = [exc, orig, getattr(orig, "__cause__", None)]
        for candidate in candidates:
            if candidate is None:
                continue
            code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
            if code in ALREADY_EXISTS_SQLSTATES:
                return StoreErrorKind.ALREADY_EXISTS
        return StoreErrorKind.OTHER

    async def ensure_schema(self) -> None:
        """Provision extension, table and HNSW index.

        If the table already carries the index nothing else happens. If the
        table exists without it, the index is added. "Already exists" errors
        from concurrent provisioning are ignored; anything else raises
        SchemaProvisionError.
        """
        if self._schema_ready:
            return

        await self._run_ddl("create_extension", self._create_extension)
        has_table, has_index = await self._inspect()

        if has_table and has_index:
            logger.debug("schema_already_provisioned", table=self.table.name)
            self._schema_ready = True
            return

        if not has_table:
            if await self._run_ddl("create_table", self._create_table):
                self._schema_ready = True
                return

        await self._run_ddl("create_index", self._create_index)
        self._schema_ready = True

    async def _inspect(self) -> Tuple[bool, bool]:
        try:
            async with self._engine.begin() as conn:
                return await conn.run_sync(self._inspect_schema)
        except SQLAlchemyError as e:
            logger.error("schema_inspection_failed", table=self.table.name, error=str(e))
            raise SchemaProvisionError(f"Could not inspect schema: {e}") from e

    def _inspect_schema(self, sync_conn) -> Tuple[bool, bool]:
        inspector = inspect(sync_conn)
        if not inspector.has_table(self.table.name):
            return False, False
        index_names = {ix["name"] for ix in inspector.get_indexes(self.table.name)}
        return True, self.embedding_index.name in index_names

    def _create_extension(self, sync_conn) -> None:
        sync_conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))

    def _create_table(self, sync_conn) -> None:
        # Table.create also emits CREATE INDEX for the attached HNSW index
        self.table.create(sync_conn)

    def _create_index(self, sync_conn) -> None:
        self.embedding_index.create(sync_conn)

    async def _run_ddl(self, step: str, fn: Callable) -> bool:
        """Run one DDL step in its own transaction.

        Returns:
            True if applied, False if the object already existed
        """
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(fn)
        except DBAPIError as e:
            if self.classify_error(e) is StoreErrorKind.ALREADY_EXISTS:
                logger.info("schema_step_already_applied", step=step, table=self.table.name)
                return False
            logger.error("schema_step_failed", step=step, table=self.table.name, error=str(e))
            raise SchemaProvisionError(f"Schema step {step!r} failed: {e}") from e
        except SQLAlchemyError as e:
            logger.error("schema_step_failed", step=step, table=self.table.name, error=str(e))
            raise SchemaProvisionError(f"Schema step {step!r} failed: {e}") from e

        logger.info("schema_step_applied", step=step, table=self.table.name)
        return True

    async def upsert(self, chunks: List[Chunk]) -> None:
        if not chunks:
            return
        for chunk in chunks:
            self._check_dimension(chunk.embedding)

        stmt = build_upsert_statement(self.table, chunks)
        try:
            async with self._engine.begin() as conn:
                await conn.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("upsert_failed", table=self.table.name, rows=len(chunks), error=str(e))
            raise StoreQueryError(f"Upsert failed: {e}") from e

        logger.debug("chunks_upserted", table=self.table.name, rows=len(chunks))

    async def query(
        self,
        embedding: List[float],
        limit: int,
        filters: Optional[SearchFilter] = None,
    ) -> List[SearchResult]:
        self._check_dimension(embedding)
        if limit <= 0:
            return []

        stmt = build_query_statement(self.table, embedding, limit, filters)
        try:
            async with self._engine.begin() as conn:
                if limit > PGVECTOR_DEFAULT_EF_SEARCH:
                    await conn.execute(text(f"SET LOCAL hnsw.ef_search = {int(limit)}"))
                rows = (await conn.execute(stmt)).all()
        except SQLAlchemyError as e:
            logger.error("vector_query_failed", table=self.table.name, error=str(e))
            raise StoreQueryError(f"Vector query failed: {e}") from e

        results = [
            SearchResult(
                source_url=row.source_url,
                content=row.content,
                distance=float(row.distance),
            )
            for row in rows
        ]

        logger.info(
            "vector_search_completed",
            top_k=limit,
            results_found=len(results),
            filtered=filters is not None and not filters.is_empty,
        )
        return results

    async def count(self) -> int:
        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(select(func.count()).select_from(self.table))
                return int(result.scalar_one())
        except SQLAlchemyError as e:
            raise StoreQueryError(f"Count failed: {e}") from e

    async def close(self) -> None:
        await self._engine.dispose()
