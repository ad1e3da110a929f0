"""Pipelines for document ingestion, RAG chat, reporting and the ledger heuristics.

Each step is callable on its own so the API routes and scripts can reuse it.
"""
