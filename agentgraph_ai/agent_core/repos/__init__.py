"""Checkpoint store interface and its backends.

The checkpoint store is the persistence boundary of the resumable executor.

Backends
--------

- ``MemoryCheckpointStore``: process-local, bounded per thread; tests and
  single-process use.
- ``SqlCheckpointStore``: async SQLAlchemy (PostgreSQL via asyncpg in
  production, SQLite via aiosqlite in tests). Keeps the full history of a
  thread.
- ``KodoCheckpointStore``: Qiniu Kodo object storage over httpx. Keeps only
  the latest checkpoint of a thread.

The runtime is written against the ``CheckpointStore`` Protocol, so any
object with the same async methods can be passed in.
"""

from .interfaces import CheckpointStore
from .kodo import KodoCheckpointStore, KodoClient, KodoRequestError
from .memory import MemoryCheckpointStore
from .retry import RetryPolicy, with_retry
from .sql import SqlCheckpointStore, create_all, create_engine, create_sessionmaker

__all__ = [
    "CheckpointStore",
    "KodoCheckpointStore",
    "KodoClient",
    "KodoRequestError",
    "MemoryCheckpointStore",
    "RetryPolicy",
    "SqlCheckpointStore",
    "create_all",
    "create_engine",
    "create_sessionmaker",
    "with_retry",
]
