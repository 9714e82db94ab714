"""Embedding cache and semantic search.

Each scope directory keeps an ``embeddings.json`` next to its index:
    {"version": 1, "memories": {"<id>": {"embedding": [...], "hash": "...", "timestamp": "..."}}}

Vectors are unit length. The hash is the first 16 hex chars of the SHA-256
of the record's title, a blank line and its body.
"""
