"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Whitespace normalization and overlapping chunking
- Same-host site crawling
- Vector storage (pgvector or local FAISS)
- Indexing pipeline with content-addressable chunk IDs
- Semantic retrieval and dominant-host narrowing
"""
