"""Rebuild a linear transcript from a conversation's node mapping.

An export stores each conversation as a tree: ``mapping`` maps node ids to
``{"parent": ..., "children": [...], "message": {...}}``. Regenerated replies
show up as extra children of the same parent. The displayed transcript is the
path from the single root through the *first* child of every node; later
siblings are dropped.
"""
import logging
from typing import Dict, List, Optional, Union

from .errors import MalformedJSON
from .jsonvalue import JSONValue, Kind, decode
from .models import Message, MessageNode

logger = logging.getLogger(__name__)

Mapping = Dict[str, MessageNode]


def _payload(message: Optional[JSONValue]):
    """Return (role, first text part) or (None, None) if the message is unusable."""
    if message is None or message.kind is not Kind.OBJECT:
        return None, None
    author = message.get("author")
    role = author.get("role") if author is not None else None
    role = role.as_string() if role is not None else None
    content = message.get("content")
    parts = content.get("parts") if content is not None else None
    parts = parts.as_array() if parts is not None else None
    if role is None or not parts:
        return None, None
    text = parts[0].as_string()
    if not text:
        return None, None
    return role, text


def parse_node(node_id: str, node: JSONValue) -> Optional[MessageNode]:
    if node.kind is not Kind.OBJECT:
        return None

    parent = node.get("parent")
    if parent is None or parent.is_null:
        parent_id = None
    elif parent.kind is Kind.STRING:
        parent_id = parent.as_string() or None
    else:
        # unusable reference, but the node still has one: never a root
        parent_id = parent.dumps()

    children = node.get("children")
    child_ids = ()
    if children is not None:
        child_ids = tuple(c.as_string() for c in (children.as_array() or ()) if c.kind is Kind.STRING)

    role, text = _payload(node.get("message"))
    return MessageNode(id=node_id, parent_id=parent_id, child_ids=child_ids, author=role, text=text)


def parse_mapping(mapping: Union[JSONValue, str, bytes, dict, None]) -> Mapping:
    """Project a raw mapping into MessageNodes, skipping malformed entries.

    Accepts a decoded JSONValue, JSON text, or a plain dict.
    """
    if mapping is None:
        return {}
    if isinstance(mapping, (str, bytes)):
        try:
            mapping = decode(mapping)
        except MalformedJSON:
            logger.debug("mapping is not valid JSON")
            return {}
    elif isinstance(mapping, dict):
        mapping = JSONValue(mapping)

    entries = mapping.as_object()
    if entries is None:
        return {}
    nodes = {}
    for node_id, raw in entries.items():
        node = parse_node(node_id, raw)
        if node is None:
            logger.debug(f"skipping malformed node {node_id}")
            continue
        nodes[node_id] = node
    return nodes


def root_candidates(nodes: Mapping) -> List[str]:
    return sorted(node_id for node_id, node in nodes.items() if node.is_root_candidate)


def find_root(nodes: Mapping, conversation_id: str = None) -> Optional[str]:
    """The unique root candidate, or None when there are zero or several."""
    candidates = root_candidates(nodes)
    if len(candidates) == 1:
        return candidates[0]
    if nodes:
        logger.warning(
            f"conversation {conversation_id or '?'}: {len(candidates)} root candidates, transcript left empty"
        )
    return None


def linearize(nodes: Mapping, root_id: str) -> List[MessageNode]:
    """Walk from root_id through first children until a leaf or a dangling id."""
    path = []
    seen = set()
    cursor = root_id
    while cursor is not None and cursor in nodes and cursor not in seen:
        node = nodes[cursor]
        path.append(node)
        seen.add(cursor)
        cursor = node.child_ids[0] if node.child_ids else None
    return path


def reconstruct(mapping, conversation_id: str = None) -> List[Message]:
    """Ordered messages along the active branch of a conversation mapping."""
    nodes = parse_mapping(mapping)
    root_id = find_root(nodes, conversation_id)
    if root_id is None:
        return []
    return [
        Message(node_id=node.id, author=node.author, text=node.text)
        for node in linearize(nodes, root_id)
        if node.has_payload
    ]


def conversation_messages(record) -> List[Message]:
    """Messages for a stored ConversationRecord (mapping is kept as JSON text)."""
    if not record.mapping:
        return []
    return reconstruct(record.mapping, conversation_id=record.id)
