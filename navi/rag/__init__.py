"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Text extraction from PDF and Word documents
- Sentence-based chunking
- Document ingestion
- Cosine-similarity retrieval
- Augmented answer streaming
"""
