"""Read-side views over stored conversations: filters, search and folder grouping."""
import threading
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Tuple

from .db import DB
from .models import ConversationRecord, Folder, FTSSearchResult, SearchHit
from .text import make_snippet


def filter_by_tag(conversations: Iterable[ConversationRecord], tag: Optional[str]) -> List[ConversationRecord]:
    """Conversations carrying exactly this tag. A falsy tag means no filter."""
    if not tag:
        return list(conversations)
    return [c for c in conversations if tag in c.tags]


def filter_by_search(conversations: Iterable[ConversationRecord], search_text: Optional[str]) -> List[ConversationRecord]:
    """Cheap pre-filter: case-insensitive substring of the title or of the raw mapping text."""
    if not (search_text or "").strip():
        return list(conversations)
    needle = search_text.lower()
    return [
        c for c in conversations
        if needle in c.title.lower() or (c.mapping is not None and needle in c.mapping.lower())
    ]


def merge_search_hits(query: str, conversations: Iterable[ConversationRecord],
                      fts_results: Iterable[FTSSearchResult]) -> Dict[str, SearchHit]:
    """Union of message matches and title matches, keyed by conversation id.

    Each conversation keeps its first matching message as the snippet; a
    conversation that only matches by title gets a hit without one. Order
    follows ``conversations``.
    """
    needle = (query or "").strip().lower()
    if not needle:
        return OrderedDict()
    conversations = list(conversations)

    first_match = {}
    for r in fts_results:
        first_match.setdefault(r.conversation_id, r)

    hits = OrderedDict()
    for c in conversations:
        title_match = needle in c.title.lower()
        m = first_match.get(c.id)
        if m is not None:
            hits[c.id] = SearchHit(
                conversation_id=c.id,
                title=c.title,
                matched_title=title_match,
                message_id=m.message_id,
                author=m.author,
                snippet=make_snippet(m.content, query),
            )
        elif title_match:
            hits[c.id] = SearchHit(conversation_id=c.id, title=c.title, matched_title=True)
    return hits


def perform_search(query: str, conversations: Optional[Iterable[ConversationRecord]] = None,
                   db_path=None) -> Dict[str, SearchHit]:
    """Full-text search over message content plus title matching.

    Only conversations in ``conversations`` are returned (defaults to the whole store),
    so a search can be narrowed by an earlier tag filter.
    """
    if not (query or "").strip():
        return OrderedDict()
    with DB(db_path) as db:
        if conversations is None:
            conversations = db.fetch_all_conversations()
        fts_results = db.search_messages_fts(query)
    return merge_search_hits(query, conversations, fts_results)


def group_by_folder(conversations: Iterable[ConversationRecord],
                    folders: Iterable[Folder]) -> Tuple[List[Tuple[Folder, List[ConversationRecord]]], List[ConversationRecord]]:
    """Partition conversations by ``folder_id``.

    Returns (groups, ungrouped). Groups follow folder order and omit folders
    with no current members. A conversation whose folder_id is null or names
    an unknown folder is ungrouped. Folder.conversation_ids is not consulted.
    """
    folders = list(folders)
    known = {f.id for f in folders}
    members = {f.id: [] for f in folders}
    ungrouped = []
    for c in conversations:
        if c.folder_id and c.folder_id in known:
            members[c.folder_id].append(c)
        else:
            ungrouped.append(c)
    groups = []
    seen = set()
    for f in folders:
        if f.id in seen or not members[f.id]:
            continue
        seen.add(f.id)
        groups.append((f, members[f.id]))
    return groups, ungrouped


class RecentList:
    """Most-recently-used items, most recent first, bounded and deduplicated.

    Lives for the process only.
    """

    def __init__(self, limit: int = 3):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.limit = limit
        self._items = []
        self._lock = threading.Lock()

    def touch(self, item: str) -> List[str]:
        with self._lock:
            if item in self._items:
                self._items.remove(item)
            self._items.insert(0, item)
            del self._items[self.limit:]
            return list(self._items)

    def discard(self, item: str):
        with self._lock:
            if item in self._items:
                self._items.remove(item)

    def clear(self):
        with self._lock:
            self._items.clear()

    def items(self) -> List[str]:
        with self._lock:
            return list(self._items)

    def __len__(self):
        return len(self._items)
