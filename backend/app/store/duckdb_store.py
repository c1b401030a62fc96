"""DuckDB-backed durable store.

Database Schema:
    users:            id, username (unique), display_name, avatar_url,
                      password_hash, created_at
    channels:         id, name (unique), description, is_private,
                      created_by, created_at
    channel_members:  (channel_id, user_id) primary key, joined_at
    messages:         id, channel_id, sender_id, text, edited,
                      attachments (JSON text), created_at

Thread Safety:
    A single DuckDB connection is shared by the process and guarded by a
    lock, so sync route handlers running in FastAPI's threadpool and async
    handlers on the event loop can both use it.

Timestamps:
    Message creation times are issued by ``_next_timestamp`` and are
    strictly increasing (bumped by one microsecond on collision). Pagination
    uses ``created_at < cursor``, which would otherwise drop messages sharing
    the cursor's timestamp.

Usage:
    store = DuckDBStore(":memory:")
    channel = store.create_channel("general", created_by=user.id)
    store.create_message(channel.id, user.id, "hello")
"""
import json
import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import duckdb

from app.errors import ConflictError, NotFoundError

from .base import DurableStore
from .schemas import Attachment, ChannelRecord, IdentityRecord, MessageRecord

logger = logging.getLogger(__name__)

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id            VARCHAR PRIMARY KEY,
        username      VARCHAR NOT NULL UNIQUE,
        display_name  VARCHAR NOT NULL,
        avatar_url    VARCHAR,
        password_hash VARCHAR NOT NULL,
        created_at    TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS channels (
        id          VARCHAR PRIMARY KEY,
        name        VARCHAR NOT NULL UNIQUE,
        description VARCHAR NOT NULL DEFAULT '',
        is_private  BOOLEAN NOT NULL DEFAULT FALSE,
        created_by  VARCHAR NOT NULL,
        created_at  TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS channel_members (
        channel_id VARCHAR NOT NULL,
        user_id    VARCHAR NOT NULL,
        joined_at  TIMESTAMP NOT NULL,
        PRIMARY KEY (channel_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id          VARCHAR PRIMARY KEY,
        channel_id  VARCHAR NOT NULL,
        sender_id   VARCHAR NOT NULL,
        text        VARCHAR NOT NULL,
        edited      BOOLEAN NOT NULL DEFAULT FALSE,
        attachments VARCHAR,
        created_at  TIMESTAMP NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_channel_created ON messages(channel_id, created_at)",
]

_USER_COLUMNS = "id, username, display_name, avatar_url, password_hash, created_at"
_CHANNEL_COLUMNS = "id, name, description, is_private, created_by, created_at"
_MESSAGE_COLUMNS = "id, channel_id, sender_id, text, edited, attachments, created_at"


def _to_utc(value: datetime) -> datetime:
    """DuckDB TIMESTAMP columns come back naive; they are always UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class DuckDBStore(DurableStore):
    """Durable store on a single embedded DuckDB database.

    Args:
        db_path: Database file path, or ``":memory:"`` for an ephemeral
            database (tests).
    """

    def __init__(self, db_path: str = "teamchat.duckdb") -> None:
        self._db_path = db_path
        self._lock = threading.Lock()
        self._conn: Optional[duckdb.DuckDBPyConnection] = duckdb.connect(db_path)
        for statement in _SCHEMA:
            self._conn.execute(statement)
        row = self._conn.execute("SELECT max(created_at) FROM messages").fetchone()
        self._last_ts: Optional[datetime] = row[0] if row else None
        logger.info("[Store] Initialized DuckDB store at %s", db_path)

    # -----------------------------------------------------------------------
    # Identities
    # -----------------------------------------------------------------------

    def create_identity(
        self,
        username: str,
        display_name: str,
        password_hash: str,
        avatar_url: Optional[str] = None,
    ) -> IdentityRecord:
        username = username.strip().lower()
        with self._lock:
            conn = self._connection()
            existing = conn.execute(
                "SELECT 1 FROM users WHERE username = ?", [username]
            ).fetchone()
            if existing:
                raise ConflictError("username already exists")
            identity_id = str(uuid.uuid4())
            now = self._next_timestamp()
            conn.execute(
                f"INSERT INTO users ({_USER_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                [identity_id, username, display_name, avatar_url, password_hash, now],
            )
            row = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", [identity_id]
            ).fetchone()
        logger.info("[Store] Created identity %s (%s)", identity_id, username)
        return self._row_to_identity(row)

    def find_identity(self, identity_id: str) -> Optional[IdentityRecord]:
        with self._lock:
            row = self._connection().execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", [identity_id]
            ).fetchone()
        return self._row_to_identity(row) if row else None

    def find_identity_by_username(self, username: str) -> Optional[IdentityRecord]:
        with self._lock:
            row = self._connection().execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE username = ?",
                [username.strip().lower()],
            ).fetchone()
        return self._row_to_identity(row) if row else None

    # -----------------------------------------------------------------------
    # Channels
    # -----------------------------------------------------------------------

    def create_channel(
        self,
        name: str,
        created_by: str,
        description: str = "",
        is_private: bool = False,
    ) -> ChannelRecord:
        name = name.strip()
        with self._lock:
            conn = self._connection()
            existing = conn.execute(
                "SELECT 1 FROM channels WHERE name = ?", [name]
            ).fetchone()
            if existing:
                raise ConflictError("Channel name already exists")
            channel_id = str(uuid.uuid4())
            now = self._next_timestamp()
            conn.execute(
                f"INSERT INTO channels ({_CHANNEL_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                [channel_id, name, description or "", is_private, created_by, now],
            )
            conn.execute(
                "INSERT INTO channel_members (channel_id, user_id, joined_at) VALUES (?, ?, ?)",
                [channel_id, created_by, now],
            )
            channel = self._load_channel(channel_id)
        logger.info("[Store] Created channel %s (%s)", channel_id, name)
        return channel

    def find_channel_by_id(self, channel_id: str) -> Optional[ChannelRecord]:
        with self._lock:
            return self._load_channel(channel_id)

    def find_channel_by_name(self, name: str) -> Optional[ChannelRecord]:
        with self._lock:
            row = self._connection().execute(
                "SELECT id FROM channels WHERE name = ?", [name.strip()]
            ).fetchone()
            return self._load_channel(row[0]) if row else None

    def list_channels(self) -> List[ChannelRecord]:
        with self._lock:
            conn = self._connection()
            rows = conn.execute(
                f"SELECT {_CHANNEL_COLUMNS} FROM channels ORDER BY created_at ASC"
            ).fetchall()
            return [self._row_to_channel(row, self._members_of(row[0])) for row in rows]

    def add_channel_member(self, channel_id: str, identity_id: str) -> ChannelRecord:
        with self._lock:
            conn = self._connection()
            if self._load_channel(channel_id) is None:
                raise NotFoundError("Channel not found")
            already = conn.execute(
                "SELECT 1 FROM channel_members WHERE channel_id = ? AND user_id = ?",
                [channel_id, identity_id],
            ).fetchone()
            if not already:
                conn.execute(
                    "INSERT INTO channel_members (channel_id, user_id, joined_at) VALUES (?, ?, ?)",
                    [channel_id, identity_id, _to_naive_utc(datetime.now(timezone.utc))],
                )
            return self._load_channel(channel_id)

    def remove_channel_member(self, channel_id: str, identity_id: str) -> ChannelRecord:
        with self._lock:
            conn = self._connection()
            if self._load_channel(channel_id) is None:
                raise NotFoundError("Channel not found")
            conn.execute(
                "DELETE FROM channel_members WHERE channel_id = ? AND user_id = ?",
                [channel_id, identity_id],
            )
            return self._load_channel(channel_id)

    # -----------------------------------------------------------------------
    # Messages
    # -----------------------------------------------------------------------

    def create_message(
        self,
        channel_id: str,
        sender_id: str,
        text: str,
        attachments: Optional[List[Attachment]] = None,
    ) -> MessageRecord:
        attachments_json = (
            json.dumps([a.model_dump() for a in attachments]) if attachments else None
        )
        with self._lock:
            conn = self._connection()
            message_id = str(uuid.uuid4())
            now = self._next_timestamp()
            conn.execute(
                f"INSERT INTO messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, FALSE, ?, ?)",
                [message_id, channel_id, sender_id, text, attachments_json, now],
            )
            row = conn.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ?", [message_id]
            ).fetchone()
        return self._row_to_message(row)

    def find_message_by_id(self, message_id: str) -> Optional[MessageRecord]:
        with self._lock:
            row = self._connection().execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ?", [message_id]
            ).fetchone()
        return self._row_to_message(row) if row else None

    def find_messages_by_channel(
        self,
        channel_id: str,
        before: Optional[datetime] = None,
        limit: int = 20,
    ) -> List[MessageRecord]:
        query = f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE channel_id = ?"
        params: list = [channel_id]
        if before is not None:
            query += " AND created_at < ?"
            params.append(_to_naive_utc(before))
        query += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(int(limit))

        with self._lock:
            rows = self._connection().execute(query, params).fetchall()
        return [self._row_to_message(r) for r in rows]

    def delete_message(self, message_id: str) -> bool:
        with self._lock:
            result = self._connection().execute(
                "DELETE FROM messages WHERE id = ? RETURNING id", [message_id]
            ).fetchone()
        return result is not None

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.info("[Store] Closed DuckDB store at %s", self._db_path)

    # -----------------------------------------------------------------------
    # Internal (callers hold self._lock)
    # -----------------------------------------------------------------------

    def _connection(self) -> duckdb.DuckDBPyConnection:
        if self._conn is None:
            raise RuntimeError("DuckDBStore is closed")
        return self._conn

    def _next_timestamp(self) -> datetime:
        now = _to_naive_utc(datetime.now(timezone.utc))
        if self._last_ts is not None and now <= self._last_ts:
            now = self._last_ts + timedelta(microseconds=1)
        self._last_ts = now
        return now

    def _members_of(self, channel_id: str) -> List[str]:
        rows = self._connection().execute(
            "SELECT user_id FROM channel_members WHERE channel_id = ? ORDER BY joined_at ASC",
            [channel_id],
        ).fetchall()
        return [r[0] for r in rows]

    def _load_channel(self, channel_id: str) -> Optional[ChannelRecord]:
        row = self._connection().execute(
            f"SELECT {_CHANNEL_COLUMNS} FROM channels WHERE id = ?", [channel_id]
        ).fetchone()
        if row is None:
            return None
        return self._row_to_channel(row, self._members_of(channel_id))

    @staticmethod
    def _row_to_identity(row) -> IdentityRecord:
        return IdentityRecord(
            id=row[0],
            username=row[1],
            display_name=row[2],
            avatar_url=row[3],
            password_hash=row[4],
            created_at=_to_utc(row[5]),
        )

    @staticmethod
    def _row_to_channel(row, members: List[str]) -> ChannelRecord:
        return ChannelRecord(
            id=row[0],
            name=row[1],
            description=row[2] or "",
            is_private=bool(row[3]),
            created_by=row[4],
            created_at=_to_utc(row[5]),
            members=members,
        )

    @staticmethod
    def _row_to_message(row) -> MessageRecord:
        attachments = None
        if row[5]:
            attachments = [Attachment(**a) for a in json.loads(row[5])]
        return MessageRecord(
            id=row[0],
            channel_id=row[1],
            sender_id=row[2],
            text=row[3],
            edited=bool(row[4]),
            attachments=attachments,
            created_at=_to_utc(row[6]),
        )
