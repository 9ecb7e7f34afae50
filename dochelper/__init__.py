"""DocHelper retrieval core.

Crawls documentation sites (or accepts raw text), chunks and embeds the
content into a vector store, and retrieves the most relevant passages for a
natural-language query.
"""
