import sqlite3, json, logging, threading
from contextlib import contextmanager
from functools import wraps
from pathlib import Path

from . import config
from .errors import ConversationNotFound, DuplicateTag, InvalidTag, StorageError
from .models import ConversationRecord, Folder, FTSSearchResult
from .text import fts_query, normalize_tag

logger = logging.getLogger(__name__)

# The store does not support concurrent writers: every mutation outside a
# read-only connection runs under this lock (see ``writer``).
WRITE_LOCK = threading.RLock()

SCHEMA = """
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    create_time TEXT,
    update_time TEXT,
    mapping TEXT,
    folder_id TEXT
);

CREATE TABLE IF NOT EXISTS folders (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    conversation_ids TEXT NOT NULL DEFAULT '[]'
);

CREATE TABLE IF NOT EXISTS conversation_tags (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_id TEXT NOT NULL,
    tag TEXT NOT NULL,
    UNIQUE(conversation_id, tag)
);
CREATE INDEX IF NOT EXISTS idx_conversation_tags_convo ON conversation_tags(conversation_id);

CREATE VIRTUAL TABLE IF NOT EXISTS messages_fts USING fts5(
    message_id UNINDEXED,
    conversation_id UNINDEXED,
    author UNINDEXED,
    content
);
"""

# Columns added after the first release: (table, column, definition)
MIGRATIONS = [
    ("conversations", "folder_id", "TEXT"),
    ("folders", "conversation_ids", "TEXT NOT NULL DEFAULT '[]'"),
]

MEMORY = ":memory:"

_initialized = set()
_init_lock = threading.Lock()


def _storage_op(fn):
    """Report sqlite failures to callers as StorageError."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except sqlite3.Error as e:
            logger.error(f"storage operation {fn.__name__} failed: {e}")
            raise StorageError(f"{fn.__name__} failed: {e}") from e
    return wrapper


def init_db(path=None) -> list:
    """Open-or-create the store, run column migrations and create tables.

    Returns the list of "table.column" migrations applied (empty when current).
    """
    p = str(path or config.DB_PATH)
    if p == MEMORY:
        # every in-memory connection is its own store; DB() builds the schema on it
        return []
    Path(p).parent.mkdir(parents=True, exist_ok=True)
    with _init_lock:
        conn = _connect(p)
        try:
            db = Database(conn)
            applied = db.migrate_if_needed()
            db.init_schema()
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(f"Could not initialise store at {p}: {e}") from e
        finally:
            conn.close()
        _initialized.add(p)
    return applied


def _connect(p: str) -> sqlite3.Connection:
    try:
        conn = sqlite3.connect(p, timeout=30)
    except sqlite3.Error as e:
        raise StorageError(f"Could not open store at {p}: {e}") from e
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def DB(path=None):
    """Connection scoped to one unit of work: committed on success, rolled back on error."""
    p = str(path or config.DB_PATH)
    if p not in _initialized:
        init_db(p)
    conn = _connect(p)
    try:
        db = Database(conn)
        if p == MEMORY:
            db.init_schema()
        yield db
        conn.commit()
    except sqlite3.Error as e:
        conn.rollback()
        raise StorageError(str(e)) from e
    except BaseException:
        conn.rollback()
        raise
    finally:
        conn.close()


@contextmanager
def writer(path=None):
    """A DB unit of work holding the process-wide writer lock."""
    with WRITE_LOCK:
        with DB(path) as db:
            yield db


class Database:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def init_schema(self):
        self.conn.executescript(SCHEMA)
        self.conn.execute("PRAGMA journal_mode=WAL;")

    def has_table(self, table: str) -> bool:
        row = self.conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
        ).fetchone()
        return row is not None

    def has_column(self, table: str, column: str) -> bool:
        rows = self.conn.execute(f"PRAGMA table_info({table})").fetchall()
        return any(row["name"] == column for row in rows)

    def migrate_if_needed(self) -> list:
        """Add columns missing from stores created by older versions. Existing rows are kept."""
        applied = []
        for table, column, definition in MIGRATIONS:
            if not self.has_table(table) or self.has_column(table, column):
                continue
            self.conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")
            logger.info(f"Migrated: added {column} column to {table} table.")
            applied.append(f"{table}.{column}")
        return applied

    # Conversations

    @_storage_op
    def upsert_conversation(self, convo: ConversationRecord):
        """Insert or fully replace a conversation row. Tags are untouched."""
        self.conn.execute(
            """INSERT OR REPLACE INTO conversations
               (id, title, create_time, update_time, mapping, folder_id)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (convo.id, convo.title, convo.create_time, convo.update_time, convo.mapping, convo.folder_id)
        )

    def _record(self, row, tags) -> ConversationRecord:
        return ConversationRecord(
            id=row["id"],
            title=row["title"],
            create_time=row["create_time"],
            update_time=row["update_time"],
            mapping=row["mapping"],
            folder_id=row["folder_id"],
            tags=tags,
        )

    @_storage_op
    def fetch_all_conversations(self) -> list:
        tags_by_convo = {}
        for row in self.conn.execute("SELECT conversation_id, tag FROM conversation_tags ORDER BY id"):
            tags_by_convo.setdefault(row["conversation_id"], []).append(row["tag"])
        rows = self.conn.execute(
            "SELECT id, title, create_time, update_time, mapping, folder_id FROM conversations ORDER BY rowid"
        ).fetchall()
        return [self._record(r, tags_by_convo.get(r["id"], [])) for r in rows]

    @_storage_op
    def get_conversation(self, conversation_id: str):
        """Get one conversation with its tags, or None"""
        row = self.conn.execute(
            "SELECT id, title, create_time, update_time, mapping, folder_id FROM conversations WHERE id = ?",
            (conversation_id,)
        ).fetchone()
        if row is None:
            return None
        return self._record(row, self.fetch_tags(conversation_id))

    @_storage_op
    def conversation_exists(self, conversation_id: str) -> bool:
        row = self.conn.execute("SELECT 1 FROM conversations WHERE id = ?", (conversation_id,)).fetchone()
        return row is not None

    # Folders

    @_storage_op
    def upsert_folder(self, folder_id: str, name: str, conversation_ids: list = None):
        self.conn.execute(
            "INSERT OR REPLACE INTO folders (id, name, conversation_ids) VALUES (?, ?, ?)",
            (folder_id, name, json.dumps(list(conversation_ids or []), ensure_ascii=False))
        )

    @_storage_op
    def fetch_folders(self) -> list:
        rows = self.conn.execute("SELECT id, name, conversation_ids FROM folders ORDER BY rowid").fetchall()
        return [Folder(id=r["id"], name=r["name"], conversation_ids_json=r["conversation_ids"] or "[]") for r in rows]

    # Tags

    @_storage_op
    def fetch_tags(self, conversation_id: str) -> list:
        rows = self.conn.execute(
            "SELECT tag FROM conversation_tags WHERE conversation_id = ? ORDER BY id", (conversation_id,)
        ).fetchall()
        return [r["tag"] for r in rows]

    @_storage_op
    def fetch_all_tags(self) -> list:
        """Distinct tags across the store, in order of first use"""
        rows = self.conn.execute(
            "SELECT tag, MIN(id) AS first_id FROM conversation_tags GROUP BY tag ORDER BY first_id"
        ).fetchall()
        return [r["tag"] for r in rows]

    @_storage_op
    def add_tag(self, tag: str, conversation_id: str) -> str:
        """Attach a tag. Raises InvalidTag, ConversationNotFound or DuplicateTag."""
        tag = normalize_tag(tag)
        if not tag:
            raise InvalidTag(tag)
        if not self.conversation_exists(conversation_id):
            raise ConversationNotFound(conversation_id)
        try:
            self.conn.execute(
                "INSERT INTO conversation_tags (conversation_id, tag) VALUES (?, ?)",
                (conversation_id, tag)
            )
        except sqlite3.IntegrityError as e:
            logger.info(f"rejected duplicate tag {tag!r} on {conversation_id}")
            raise DuplicateTag(tag, conversation_id) from e
        return tag

    @_storage_op
    def remove_tag(self, tag: str, conversation_id: str) -> bool:
        """Detach a tag; returns False when it was not attached."""
        cur = self.conn.execute(
            "DELETE FROM conversation_tags WHERE conversation_id = ? AND tag = ?",
            (conversation_id, normalize_tag(tag))
        )
        return cur.rowcount > 0

    # Full-text index

    @_storage_op
    def insert_message_fts(self, message_id: str, conversation_id: str, author: str, content: str):
        self.conn.execute(
            "INSERT INTO messages_fts (message_id, conversation_id, author, content) VALUES (?, ?, ?, ?)",
            (message_id, conversation_id, author, content)
        )

    @_storage_op
    def delete_message_fts(self, conversation_id: str) -> int:
        cur = self.conn.execute("DELETE FROM messages_fts WHERE conversation_id = ?", (conversation_id,))
        return cur.rowcount

    @_storage_op
    def search_messages_fts(self, query: str) -> list:
        """Every indexed message matching the query, in index order."""
        match = fts_query(query)
        if not match:
            return []
        rows = self.conn.execute(
            """SELECT conversation_id, message_id, author, content
               FROM messages_fts WHERE messages_fts MATCH ? ORDER BY rowid""",
            (match,)
        ).fetchall()
        return [
            FTSSearchResult(
                conversation_id=r["conversation_id"],
                message_id=r["message_id"],
                author=r["author"],
                content=r["content"],
            )
            for r in rows
        ]

    # Consistency checks (used by scripts/validate_store.py)

    @_storage_op
    def orphaned_tags(self) -> list:
        """(conversation_id, tag) rows whose conversation no longer exists."""
        rows = self.conn.execute(
            """SELECT t.conversation_id, t.tag FROM conversation_tags t
               LEFT JOIN conversations c ON c.id = t.conversation_id
               WHERE c.id IS NULL ORDER BY t.id"""
        ).fetchall()
        return [(r["conversation_id"], r["tag"]) for r in rows]

    @_storage_op
    def stale_fts_conversations(self) -> list:
        """Conversation ids present in the message index but not in conversations."""
        rows = self.conn.execute(
            """SELECT DISTINCT conversation_id FROM messages_fts
               WHERE conversation_id NOT IN (SELECT id FROM conversations)"""
        ).fetchall()
        return sorted(r["conversation_id"] for r in rows)

    @_storage_op
    def unresolved_folder_refs(self) -> list:
        """(conversation_id, folder_id) pairs naming a folder that was never imported."""
        rows = self.conn.execute(
            """SELECT c.id, c.folder_id FROM conversations c
               LEFT JOIN folders f ON f.id = c.folder_id
               WHERE c.folder_id IS NOT NULL AND f.id IS NULL ORDER BY c.rowid"""
        ).fetchall()
        return [(r["id"], r["folder_id"]) for r in rows]

    def pending_migrations(self) -> list:
        """Migrations (as "table.column") this store still lacks."""
        return [
            f"{table}.{column}" for table, column, _ in MIGRATIONS
            if self.has_table(table) and not self.has_column(table, column)
        ]

    # Maintenance

    @_storage_op
    def clear_all_data(self):
        """Delete every row from all four relations. Irreversible once committed."""
        self.conn.execute("DELETE FROM conversations")
        self.conn.execute("DELETE FROM folders")
        self.conn.execute("DELETE FROM conversation_tags")
        self.conn.execute("DELETE FROM messages_fts")

    @_storage_op
    def table_counts(self) -> dict:
        return {
            table: self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            for table in ("conversations", "folders", "conversation_tags", "messages_fts")
        }
