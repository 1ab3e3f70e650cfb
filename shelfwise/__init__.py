"""Shelfwise - Core Application Package

This package contains the library state engine:
- Data models (book.py)
- Spine and rating display helpers (spine.py)
- Library store and its mutation rules (library.py)
- Currently-reading reconciliation (reconciler.py)
- Storage backends (repository.py)
- Goodreads import pipeline (importer.py)
- Metadata enrichment (enrichment.py)
- Reading statistics (stats.py)
"""

__version__ = "0.1.0"
