"""
Local Knowledge Base — per-project semantic code memory.

Deterministic TF-IDF embeddings over a JSON-snapshot vector store; no
model downloads, no external services.
"""
