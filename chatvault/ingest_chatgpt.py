"""Import a ChatGPT/Gemini-style conversation export into the store.

Importing loads a new snapshot: the store is cleared and refilled from the
file. Validation happens first, so a file that is empty, unparsable or of the
wrong shape never touches the store. Clearing and inserting run in a single
transaction under the writer lock, so readers see either the old snapshot or
the new one.
"""
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from .db import DB, WRITE_LOCK
from .errors import EmptyFile, InvalidExportFormat, MalformedJSON, StorageError
from .jsonvalue import JSONValue, Kind, decode
from .models import ConversationRecord
from .tree import find_root, linearize, parse_mapping

logger = logging.getLogger(__name__)


class ImportState(Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    CLEARING = "clearing"
    INSERTING = "inserting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ExportPayload:
    conversations: Tuple[JSONValue, ...]
    folders: Tuple[JSONValue, ...] = ()


@dataclass
class ImportResult:
    conversations: List[ConversationRecord] = field(default_factory=list)
    conversations_imported: int = 0
    conversations_skipped: int = 0
    folders_imported: int = 0
    folders_skipped: int = 0
    messages_indexed: int = 0
    ambiguous_roots: int = 0

    def summary(self) -> dict:
        return {
            "conversations_imported": self.conversations_imported,
            "conversations_skipped": self.conversations_skipped,
            "folders_imported": self.folders_imported,
            "folders_skipped": self.folders_skipped,
            "messages_indexed": self.messages_indexed,
            "ambiguous_roots": self.ambiguous_roots,
        }


def validate_export(data: bytes) -> ExportPayload:
    """Check the top-level shape of an export.

    Accepts ``{"conversations": [...], "folders"?: [...]}`` or a bare array
    whose first element is an object with ``id`` and ``title``.
    Raises EmptyFile, MalformedJSON or InvalidExportFormat.
    """
    if not data:
        raise EmptyFile()
    root = decode(data)

    if root.kind is Kind.OBJECT:
        convos = root.get("conversations")
        items = convos.as_array() if convos is not None else None
        if items is None:
            raise InvalidExportFormat("missing 'conversations' array")
        folders = root.get("folders")
        folder_items = folders.as_array() if folders is not None else None
        if folders is not None and folder_items is None:
            logger.warning("ignoring 'folders': not an array")
        return ExportPayload(conversations=items, folders=folder_items or ())

    if root.kind is Kind.ARRAY:
        items = root.as_array()
        if not items:
            raise InvalidExportFormat("export contains no conversations")
        first = items[0]
        if first.get("id") is None or first.get("title") is None:
            raise InvalidExportFormat("first entry has no 'id' and 'title'")
        return ExportPayload(conversations=items)

    raise InvalidExportFormat(f"root is a JSON {root.kind.value}")


def _opaque_time(value: Optional[JSONValue]) -> Optional[str]:
    """Timestamps are stored as opaque text; epoch numbers keep their decimal form."""
    if value is None:
        return None
    if value.kind is Kind.STRING:
        return value.as_string()
    if value.kind in (Kind.INT, Kind.DOUBLE):
        return str(value.as_int() if value.kind is Kind.INT else value.as_double())
    return None


def _canonical_mapping(value: Optional[JSONValue]) -> Tuple[Optional[str], Optional[JSONValue]]:
    """Return (text to store, decoded mapping object or None)."""
    if value is None or value.is_null:
        return None, None
    if value.kind is Kind.OBJECT:
        return value.dumps(), value
    if value.kind is Kind.STRING:
        text = value.as_string()
        try:
            parsed = decode(text)
        except MalformedJSON:
            # not JSON: keep the exporter's text verbatim
            return text, None
        if parsed.kind is Kind.OBJECT:
            return parsed.dumps(), parsed
        return text, None
    return None, None


def build_conversation(entry: JSONValue) -> Tuple[Optional[ConversationRecord], Optional[JSONValue]]:
    """Project one export entry into a ConversationRecord; (None, None) when id/title are missing."""
    conv_id = entry.get("id")
    title = entry.get("title")
    conv_id = conv_id.as_string() if conv_id is not None else None
    title = title.as_string() if title is not None else None
    if not conv_id or title is None:
        return None, None

    folder_id = entry.get("folder_id")
    mapping_text, mapping = _canonical_mapping(entry.get("mapping"))
    record = ConversationRecord(
        id=conv_id,
        title=title,
        create_time=_opaque_time(entry.get("create_time")),
        update_time=_opaque_time(entry.get("update_time")),
        mapping=mapping_text,
        folder_id=(folder_id.as_string() or None) if folder_id is not None else None,
    )
    return record, mapping


def build_folder(entry: JSONValue):
    """(id, name, conversation_ids) for a folder entry, or None when id/name are missing."""
    folder_id = entry.get("id")
    name = entry.get("name")
    folder_id = folder_id.as_string() if folder_id is not None else None
    name = name.as_string() if name is not None else None
    if not folder_id or name is None:
        return None
    ids = entry.get("conversation_ids")
    members = [v.as_string() for v in (ids.as_array() or ()) if v.kind is Kind.STRING] if ids is not None else []
    return folder_id, name, members


class ImportPipeline:
    """One import run: Idle -> Validating -> Clearing -> Inserting -> Done (or Failed)."""

    def __init__(self, db_path=None, on_state: Callable[[ImportState], None] = None):
        self.db_path = db_path
        self.on_state = on_state
        self.state = ImportState.IDLE

    def _set(self, state: ImportState):
        self.state = state
        if self.on_state:
            self.on_state(state)

    def run(self, data: bytes) -> ImportResult:
        t0 = time.time()
        try:
            self._set(ImportState.VALIDATING)
            payload = validate_export(data)
            result = ImportResult()
            with WRITE_LOCK:
                with DB(self.db_path) as db:
                    self._set(ImportState.CLEARING)
                    db.clear_all_data()
                    self._set(ImportState.INSERTING)
                    self._insert_folders(db, payload.folders, result)
                    self._insert_conversations(db, payload.conversations, result)
                with DB(self.db_path) as db:
                    result.conversations = db.fetch_all_conversations()
        except Exception:
            self._set(ImportState.FAILED)
            raise
        self._set(ImportState.DONE)
        logger.info(
            "import done: %s conversations (%s skipped), %s folders (%s skipped), %s messages indexed, %.3fs",
            result.conversations_imported, result.conversations_skipped,
            result.folders_imported, result.folders_skipped,
            result.messages_indexed, time.time() - t0
        )
        return result

    def _insert_folders(self, db, folders, result: ImportResult):
        for entry in folders:
            folder = build_folder(entry)
            if folder is None:
                logger.debug("skipping folder entry without id/name")
                result.folders_skipped += 1
                continue
            try:
                db.upsert_folder(*folder)
            except StorageError as e:
                logger.warning(f"skipping folder {folder[0]}: {e}")
                result.folders_skipped += 1
                continue
            result.folders_imported += 1

    def _insert_conversations(self, db, conversations, result: ImportResult):
        seen = set()
        for entry in conversations:
            record, mapping = build_conversation(entry)
            if record is None:
                logger.debug("skipping conversation entry without id/title")
                result.conversations_skipped += 1
                continue
            try:
                db.upsert_conversation(record)
            except StorageError as e:
                logger.warning(f"skipping conversation {record.id}: {e}")
                result.conversations_skipped += 1
                continue
            try:
                if record.id in seen:
                    # a later duplicate replaces the earlier row, and its messages
                    db.delete_message_fts(record.id)
                result.messages_indexed += self._index_messages(db, record.id, mapping, result)
            except StorageError as e:
                logger.warning(f"conversation {record.id} imported without a complete search index: {e}")
            seen.add(record.id)
            result.conversations_imported += 1

    def _index_messages(self, db, conversation_id: str, mapping: Optional[JSONValue], result: ImportResult) -> int:
        if mapping is None:
            return 0
        nodes = parse_mapping(mapping)
        if not nodes:
            return 0
        root_id = find_root(nodes, conversation_id)
        if root_id is None:
            result.ambiguous_roots += 1
            return 0
        count = 0
        for node in linearize(nodes, root_id):
            if not node.has_payload:
                continue
            db.insert_message_fts(node.id, conversation_id, node.author, node.text)
            count += 1
        return count


def import_bytes(data: bytes, db_path=None) -> ImportResult:
    return ImportPipeline(db_path).run(data)


def ingest_export(root: str, db_path=None) -> ImportResult:
    """Import from an export file, or from a directory holding conversations.json."""
    rootp = Path(root)
    convo_file = rootp / "conversations.json" if rootp.is_dir() else rootp
    if not convo_file.exists():
        raise FileNotFoundError(f"conversations.json not found under {root}")
    return import_bytes(convo_file.read_bytes(), db_path)


def load_all(db_path=None) -> List[ConversationRecord]:
    with DB(db_path) as db:
        return db.fetch_all_conversations()


def clear_data(db_path=None) -> List[ConversationRecord]:
    """Delete everything and return the (now empty) conversation list."""
    with WRITE_LOCK:
        with DB(db_path) as db:
            db.clear_all_data()
        logger.info("cleared all data")
        return load_all(db_path)
