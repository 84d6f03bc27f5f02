"""Per-tenant, per-session working-directory store.

Maps a (tenant, session) key to an absolute filesystem path with an
optional TTL. Expired entries are removed lazily when a read or list
encounters them; there is no background sweep.

Two backends share one interface:

- ``InMemoryWorkingDirectoryStore``: process-local dictionaries.
- ``SqliteWorkingDirectoryStore``: SQLite in WAL mode, so separate
  processes (e.g. successive CLI invocations) share sessions.
"""

from __future__ import annotations

import logging
import re
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from git_engine.errors import INVALID_KEY, GitValidationError
from git_engine.validation import validate_path_shape

if TYPE_CHECKING:
    from git_engine.config import EngineConfig
    from git_engine.models import OperationContext

logger = logging.getLogger(__name__)

MAX_TENANT_ID_LENGTH = 256
MAX_KEY_LENGTH = 1024
MAX_PREFIX_LENGTH = 512
MAX_LIST_LIMIT = 1000

_VALID_IDENTIFIER_RE = re.compile(r"^[a-zA-Z0-9_.\-/]+$")

# Sentinel: use the store's configured default TTL
_DEFAULT_TTL = object()


@dataclass
class WorkingDirectoryEntry:
    """A session's working directory."""

    tenant_id: str
    session_id: str
    path: str
    created_at: float
    ttl_seconds: Optional[int] = None

    @property
    def expires_at(self) -> Optional[float]:
        if self.ttl_seconds is None:
            return None
        return self.created_at + self.ttl_seconds

    @property
    def is_expired(self) -> bool:
        """Check if the entry has expired based on TTL."""
        expires_at = self.expires_at
        return expires_at is not None and time.time() >= expires_at

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "tenant_id": self.tenant_id,
            "session_id": self.session_id,
            "path": self.path,
            "created_at": self.created_at,
            "ttl_seconds": self.ttl_seconds,
        }

    @classmethod
    def from_row(cls, row: tuple) -> "WorkingDirectoryEntry":
        """Create from SQLite row tuple."""
        return cls(
            tenant_id=row[0],
            session_id=row[1],
            path=row[2],
            created_at=row[3],
            ttl_seconds=row[4],
        )


@dataclass
class ListResult:
    """One page of session keys, sorted ascending."""

    keys: list[str] = field(default_factory=list)
    next_cursor: Optional[str] = None


# ---------------------------------------------------------------------------
# Key validation
# ---------------------------------------------------------------------------


def _check_identifier(value: str, kind: str, max_length: int) -> None:
    if not isinstance(value, str) or not value.strip():
        raise GitValidationError.create(INVALID_KEY, f"{kind} cannot be empty")
    if len(value) > max_length:
        raise GitValidationError.create(
            INVALID_KEY, f"{kind} exceeds maximum length of {max_length} characters"
        )
    if not _VALID_IDENTIFIER_RE.match(value):
        raise GitValidationError.create(
            INVALID_KEY,
            f"{kind} contains invalid characters; only alphanumerics, "
            f"'_', '.', '-' and '/' are allowed",
        )
    if ".." in value:
        raise GitValidationError.create(INVALID_KEY, f"{kind} cannot contain '..'")


def validate_tenant_id(tenant_id: str) -> None:
    _check_identifier(tenant_id, "Tenant ID", MAX_TENANT_ID_LENGTH)


def validate_session_key(key: str) -> None:
    _check_identifier(key, "Session key", MAX_KEY_LENGTH)


def validate_prefix(prefix: str) -> None:
    if len(prefix) > MAX_PREFIX_LENGTH:
        raise GitValidationError.create(
            INVALID_KEY, f"Prefix exceeds maximum length of {MAX_PREFIX_LENGTH} characters"
        )
    if prefix and ".." in prefix:
        raise GitValidationError.create(INVALID_KEY, "Prefix cannot contain '..'")


def _check_limit(limit: Optional[int]) -> None:
    if limit is not None and not 1 <= limit <= MAX_LIST_LIMIT:
        raise GitValidationError.create(
            INVALID_KEY, f"limit must be between 1 and {MAX_LIST_LIMIT}, got {limit}"
        )


def _paginate(keys: list[str], limit: Optional[int], cursor: Optional[str]) -> ListResult:
    keys = sorted(keys)
    if cursor is not None:
        keys = [k for k in keys if k > cursor]
    if limit is not None and len(keys) > limit:
        page = keys[:limit]
        return ListResult(keys=page, next_cursor=page[-1])
    return ListResult(keys=keys)


# ---------------------------------------------------------------------------
# Store interface
# ---------------------------------------------------------------------------


class WorkingDirectoryStore(ABC):
    """Abstract (tenant, session) -> path store with lazy TTL eviction.

    ``context`` parameters are accepted for tracing and are not used for
    scoping; the explicit ``tenant_id`` argument is authoritative.
    """

    def __init__(self, default_ttl_seconds: Optional[int] = None):
        self.default_ttl_seconds = default_ttl_seconds

    def set(
        self,
        tenant_id: str,
        session_id: str,
        path: str,
        context: Optional["OperationContext"] = None,
        ttl=_DEFAULT_TTL,
    ) -> WorkingDirectoryEntry:
        """Store (or overwrite) the working directory for a session.

        Args:
            tenant_id: Owning tenant.
            session_id: Session key within the tenant.
            path: Absolute, traversal-free directory path.
            context: Optional operation context (tracing only).
            ttl: Seconds until expiry. Omit for the store default;
                pass None for an entry that never expires.

        Returns:
            The stored entry.
        """
        validate_tenant_id(tenant_id)
        validate_session_key(session_id)
        validate_path_shape(path, "path")
        ttl_seconds = self.default_ttl_seconds if ttl is _DEFAULT_TTL else ttl
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise GitValidationError.create(
                INVALID_KEY, f"ttl must be positive, got {ttl_seconds}"
            )
        entry = WorkingDirectoryEntry(
            tenant_id=tenant_id,
            session_id=session_id,
            path=path,
            created_at=time.time(),
            ttl_seconds=ttl_seconds,
        )
        self._put(entry)
        logger.debug("Set working directory for %s/%s: %s", tenant_id, session_id, path)
        return entry

    def get(
        self,
        tenant_id: str,
        session_id: str,
        context: Optional["OperationContext"] = None,
    ) -> Optional[str]:
        """Return the session's path, or None if absent or expired."""
        entry = self.get_entry(tenant_id, session_id)
        return entry.path if entry is not None else None

    def get_entry(self, tenant_id: str, session_id: str) -> Optional[WorkingDirectoryEntry]:
        validate_tenant_id(tenant_id)
        validate_session_key(session_id)
        return self._get(tenant_id, session_id)

    def delete(
        self,
        tenant_id: str,
        session_id: str,
        context: Optional["OperationContext"] = None,
    ) -> bool:
        """Remove the session's entry. Returns True if a live entry was removed."""
        validate_tenant_id(tenant_id)
        validate_session_key(session_id)
        removed = self._delete(tenant_id, session_id)
        if removed:
            logger.debug("Cleared working directory for %s/%s", tenant_id, session_id)
        return removed

    clear = delete

    def list(
        self,
        tenant_id: str,
        prefix: str = "",
        context: Optional["OperationContext"] = None,
        *,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> ListResult:
        """List live session keys under ``prefix`` for one tenant."""
        validate_tenant_id(tenant_id)
        validate_prefix(prefix)
        _check_limit(limit)
        return _paginate(self._keys(tenant_id, prefix), limit, cursor)

    @abstractmethod
    def _put(self, entry: WorkingDirectoryEntry) -> None: ...

    @abstractmethod
    def _get(self, tenant_id: str, session_id: str) -> Optional[WorkingDirectoryEntry]: ...

    @abstractmethod
    def _delete(self, tenant_id: str, session_id: str) -> bool: ...

    @abstractmethod
    def _keys(self, tenant_id: str, prefix: str) -> list[str]:
        """Live keys with ``prefix``; expired entries found are removed."""


class InMemoryWorkingDirectoryStore(WorkingDirectoryStore):
    """Thread-safe in-process store keyed by tenant, then session."""

    def __init__(self, default_ttl_seconds: Optional[int] = None):
        super().__init__(default_ttl_seconds)
        self._tenants: dict[str, dict[str, WorkingDirectoryEntry]] = {}
        self._lock = threading.RLock()

    def _put(self, entry: WorkingDirectoryEntry) -> None:
        with self._lock:
            self._tenants.setdefault(entry.tenant_id, {})[entry.session_id] = entry

    def _get(self, tenant_id: str, session_id: str) -> Optional[WorkingDirectoryEntry]:
        with self._lock:
            entries = self._tenants.get(tenant_id)
            if not entries:
                return None
            entry = entries.get(session_id)
            if entry is None:
                return None
            if entry.is_expired:
                del entries[session_id]
                return None
            return entry

    def _delete(self, tenant_id: str, session_id: str) -> bool:
        with self._lock:
            entries = self._tenants.get(tenant_id)
            if not entries or session_id not in entries:
                return False
            entry = entries.pop(session_id)
            return not entry.is_expired

    def _keys(self, tenant_id: str, prefix: str) -> list[str]:
        with self._lock:
            entries = self._tenants.get(tenant_id)
            if not entries:
                return []
            keys = []
            for key, entry in list(entries.items()):
                if not key.startswith(prefix):
                    continue
                if entry.is_expired:
                    del entries[key]
                    continue
                keys.append(key)
            return keys

    def count(self, tenant_id: str) -> int:
        """Return count of stored entries for a tenant (including expired)."""
        with self._lock:
            return len(self._tenants.get(tenant_id, {}))


class SqliteWorkingDirectoryStore(WorkingDirectoryStore):
    """Store backed by SQLite with WAL mode for concurrent processes."""

    def __init__(self, db_path: str, default_ttl_seconds: Optional[int] = None):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file. Parent directories
                     will be created if they don't exist.
            default_ttl_seconds: TTL applied when ``set`` omits one.
        """
        super().__init__(default_ttl_seconds)
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a new database connection with proper settings."""
        conn = sqlite3.connect(
            str(self._db_path),
            timeout=5.0,
            isolation_level=None,  # autocommit
        )
        conn.execute("PRAGMA busy_timeout = 5000")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        return conn

    def _init_db(self) -> None:
        """Initialize database schema."""
        conn = self._get_connection()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS working_dirs (
                    tenant_id TEXT NOT NULL,
                    session_id TEXT NOT NULL,
                    path TEXT NOT NULL,
                    created_at REAL NOT NULL,
                    ttl_seconds INTEGER,
                    PRIMARY KEY (tenant_id, session_id)
                )
            """)
        finally:
            conn.close()

    def _put(self, entry: WorkingDirectoryEntry) -> None:
        with self._lock:
            conn = self._get_connection()
            try:
                conn.execute(
                    """
                    INSERT INTO working_dirs
                        (tenant_id, session_id, path, created_at, ttl_seconds)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(tenant_id, session_id) DO UPDATE SET
                        path = excluded.path,
                        created_at = excluded.created_at,
                        ttl_seconds = excluded.ttl_seconds
                    """,
                    (
                        entry.tenant_id,
                        entry.session_id,
                        entry.path,
                        entry.created_at,
                        entry.ttl_seconds,
                    ),
                )
            finally:
                conn.close()

    def _get(self, tenant_id: str, session_id: str) -> Optional[WorkingDirectoryEntry]:
        with self._lock:
            conn = self._get_connection()
            try:
                row = conn.execute(
                    """
                    SELECT tenant_id, session_id, path, created_at, ttl_seconds
                    FROM working_dirs
                    WHERE tenant_id = ? AND session_id = ?
                    """,
                    (tenant_id, session_id),
                ).fetchone()
                if not row:
                    return None
                entry = WorkingDirectoryEntry.from_row(row)
                if entry.is_expired:
                    self._remove(conn, tenant_id, session_id)
                    return None
                return entry
            finally:
                conn.close()

    def _delete(self, tenant_id: str, session_id: str) -> bool:
        with self._lock:
            live = self._get(tenant_id, session_id) is not None
            conn = self._get_connection()
            try:
                self._remove(conn, tenant_id, session_id)
            finally:
                conn.close()
            return live

    def _keys(self, tenant_id: str, prefix: str) -> list[str]:
        with self._lock:
            conn = self._get_connection()
            try:
                rows = conn.execute(
                    """
                    SELECT tenant_id, session_id, path, created_at, ttl_seconds
                    FROM working_dirs
                    WHERE tenant_id = ? AND substr(session_id, 1, ?) = ?
                    """,
                    (tenant_id, len(prefix), prefix),
                ).fetchall()
                keys = []
                for row in rows:
                    entry = WorkingDirectoryEntry.from_row(row)
                    if entry.is_expired:
                        self._remove(conn, tenant_id, entry.session_id)
                        continue
                    keys.append(entry.session_id)
                return keys
            finally:
                conn.close()

    @staticmethod
    def _remove(conn: sqlite3.Connection, tenant_id: str, session_id: str) -> None:
        conn.execute(
            "DELETE FROM working_dirs WHERE tenant_id = ? AND session_id = ?",
            (tenant_id, session_id),
        )


def create_store(config: "EngineConfig") -> WorkingDirectoryStore:
    """Build the store backend selected by configuration."""
    if config.store_backend == "sqlite":
        return SqliteWorkingDirectoryStore(
            config.store_path,
            default_ttl_seconds=config.working_dir_ttl_seconds,
        )
    return InMemoryWorkingDirectoryStore(
        default_ttl_seconds=config.working_dir_ttl_seconds,
    )
