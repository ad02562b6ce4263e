"""
Content Processors Package

This package contains services for turning portfolio content into
searchable form.

Modules:
--------
- embedder: Embedding generation using sentence-transformers
- indexer: Embedding index maintenance for facts and projects
- text_search: Lexical scoring for hybrid search
"""
