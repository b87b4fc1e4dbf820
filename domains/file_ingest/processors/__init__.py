"""
File Ingestion Processors

Per-file processing utilities:
- registry.py - Processed (path, mtime) tracking
- extractor.py - Bounded text extraction
- orchestrator.py - Classification policy and keyword fallback
- relocator.py - Duplicate resolution, moves, review and quarantine folders
- activity.py - Activity log and undo
"""
