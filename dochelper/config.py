"""Application configuration with sensible defaults."""
import os
from pathlib import Path


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))

# Embedding provider
EMBEDDING_PROVIDER = os.getenv("EMBEDDING_PROVIDER", "google")  # google | ollama
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-004")
EMBEDDING_DIM = int(os.getenv("EMBEDDING_DIM", "768"))
EMBEDDING_TIMEOUT = float(os.getenv("EMBEDDING_TIMEOUT", "60.0"))

GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY")
GOOGLE_API_BASE_URL = os.getenv(
    "GOOGLE_API_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"
)

OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
OLLAMA_BATCH_EMBED = _env_bool("OLLAMA_BATCH_EMBED", "true")  # /api/embed available

# Vector store
VECTOR_BACKEND = os.getenv("VECTOR_BACKEND", "pgvector")  # pgvector | faiss
VECTOR_TABLE = os.getenv("VECTOR_TABLE", "embedded_documents")

DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = int(os.getenv("DB_PORT", "5432"))
DB_USER = os.getenv("DB_USER", "postgres")
DB_PASSWORD = os.getenv("DB_PASSWORD", "")
DB_NAME = os.getenv("DB_NAME", "dochelper")
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))

HNSW_M = int(os.getenv("HNSW_M", "16"))
HNSW_EF_CONSTRUCTION = int(os.getenv("HNSW_EF_CONSTRUCTION", "64"))

# Crawler (politeness over throughput)
CRAWL_MAX_PAGES = int(os.getenv("CRAWL_MAX_PAGES", "30"))
CRAWL_MAX_DEPTH = int(os.getenv("CRAWL_MAX_DEPTH", "2"))
CRAWL_DELAY_MS = int(os.getenv("CRAWL_DELAY_MS", "150"))
CRAWL_USER_AGENT = os.getenv("CRAWL_USER_AGENT", "DocHelperBot/1.0")

# Chunking (character-based to avoid tokenizer inconsistencies)
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "1200"))
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "200"))

# Indexing payload limits
EMBED_BATCH_SIZE = int(os.getenv("EMBED_BATCH_SIZE", "64"))
UPSERT_BATCH_SIZE = int(os.getenv("UPSERT_BATCH_SIZE", "200"))

# Retrieval
RETRIEVAL_TOP_K = int(os.getenv("RETRIEVAL_TOP_K", "8"))
HISTORY_TURNS = int(os.getenv("HISTORY_TURNS", "4"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
