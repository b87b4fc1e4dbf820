"""
File Ingestion Collectors

Long-running pieces that notice files and decide when they are ready:
- watcher.py - Debounced directory monitoring
- scanner.py - Readiness filter over the inbox listing
- retry.py - Exponential-backoff retry scheduling
"""
