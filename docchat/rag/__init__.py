"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Document chunking with overlap
- FAISS vector storage behind the vector index gateway
- Context assembly for grounded prompts
- Document ingestion (upload, delete, search, reindex)
"""
