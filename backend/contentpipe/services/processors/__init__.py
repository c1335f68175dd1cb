"""
Content Processors Package

Leaf components of the pipeline. None of them touch the database.

Modules:
--------
- tokens: token counting with a character-ratio fallback
- chunker: token-bounded, sentence-preferring text chunking
- pdf: PDF validation and page text extraction (PyMuPDF)
- embedder: embedding providers and the retrying EmbeddingGenerator
- vectors: vector literal codec and cosine similarity
- vector_store: in-memory similarity search
"""
