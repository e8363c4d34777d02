"""Document chunking, embedding and retrieval ranking for RAG applications."""

__version__ = "0.1.0"
