"""Ingestion package for offline pipelines.

Contains the ingestor that chunks and embeds uploaded documents into the chunk
store. See ingest_document.py.
"""
