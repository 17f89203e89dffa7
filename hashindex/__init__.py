"""
hashindex - content-hash directory indexer.

Indexes a directory tree by content hash, compares the result against the
previous snapshot and optionally mirrors the changes onto a second directory.
"""

APP_NAME = "hashindex"
APP_VERSION = "1.0.0"

__version__ = APP_VERSION
