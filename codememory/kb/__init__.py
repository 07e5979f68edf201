"""
Knowledge Base package for codememory.

  - Local KB: chunk records, embedder, vector store and indexer
  - Context layer: semantic context, project orientation, memory ledger
"""

__version__ = "1.0.0"
