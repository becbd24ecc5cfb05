"""Typed records projected out of export JSON and out of the store."""
import json
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class MessageNode:
    """One entry of a conversation's mapping."""

    id: str
    parent_id: Optional[str] = None  # None, JSON null and "" all mean "no parent"
    child_ids: tuple = ()
    author: Optional[str] = None
    text: Optional[str] = None

    @property
    def is_root_candidate(self) -> bool:
        return not self.parent_id

    @property
    def has_payload(self) -> bool:
        return self.author is not None and self.text is not None


@dataclass(frozen=True)
class Message:
    """A displayable message recovered from the active branch."""

    node_id: str
    author: str  # "user", "assistant", or whatever role the export carries
    text: str

    def to_dict(self) -> dict:
        return {"node_id": self.node_id, "author": self.author, "text": self.text}


@dataclass
class ConversationRecord:
    id: str
    title: str
    create_time: Optional[str] = None
    update_time: Optional[str] = None
    mapping: Optional[str] = None  # JSON text, re-parsed on read
    folder_id: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "create_time": self.create_time,
            "update_time": self.update_time,
            "folder_id": self.folder_id,
            "tags": list(self.tags),
        }


@dataclass
class Folder:
    id: str
    name: str
    conversation_ids_json: str = "[]"

    @property
    def conversation_ids(self) -> List[str]:
        """Imported membership list. Display grouping uses ConversationRecord.folder_id."""
        try:
            ids = json.loads(self.conversation_ids_json)
        except (TypeError, ValueError):
            return []
        if not isinstance(ids, list):
            return []
        return [i for i in ids if isinstance(i, str)]

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "conversation_ids": self.conversation_ids}


@dataclass(frozen=True)
class FTSSearchResult:
    conversation_id: str
    message_id: str
    author: str
    content: str


@dataclass
class SearchHit:
    """A conversation surfaced by search, with the first matching message if any."""

    conversation_id: str
    title: str
    matched_title: bool = False
    message_id: Optional[str] = None
    author: Optional[str] = None
    snippet: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "conversation_id": self.conversation_id,
            "title": self.title,
            "matched_title": self.matched_title,
            "message_id": self.message_id,
            "author": self.author,
            "snippet": self.snippet,
        }
