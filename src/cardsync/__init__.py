"""
cardsync: keeps a locally edited card/project snapshot in sync with a
single JSON document in cloud storage.

Modules:
- core: data models, exceptions and logging setup
- snapshot: canonical hashing, structural diff and the local snapshot holder
- state: durable local state (persisted snapshot, crash-recovery slot)
- remote: remote document stores (Dropbox, in-memory)
- sync: the sync engine and its scheduler
- config: YAML/environment configuration
"""

__version__ = "0.1.0"
