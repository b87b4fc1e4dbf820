"""
File Ingestion Domain

Watches the inbox directory and routes each new file by user rules:
- Readiness filtering (partial downloads, installers, locked files)
- Retry with exponential backoff for files not yet processable
- Rule classification with keyword fallback when the model is unavailable
- Content-hash duplicate resolution and non-destructive relocation
"""

__all__ = ["collectors", "processors", "service"]
