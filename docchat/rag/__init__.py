"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Document loading and deduplication
- Fixed-size chunking with overlap
- Embedding generation
- SQLite + FAISS vector storage
- Retrieval and prompt assembly for the chat model
"""
