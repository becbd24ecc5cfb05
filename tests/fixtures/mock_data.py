"""
Sample export payloads for testing import, reconstruction and queries
"""
import json
from typing import Any, Dict, List


def node(parent, children, role=None, text=None, parts=None) -> Dict[str, Any]:
    """One mapping entry in ChatGPT export shape."""
    n = {"parent": parent, "children": list(children)}
    if role is not None:
        n["message"] = {
            "author": {"role": role},
            "content": {"parts": parts if parts is not None else [text]},
        }
    else:
        n["message"] = None
    return n


class MockExports:
    """Mock ChatGPT export files"""

    @staticmethod
    def simple_mapping() -> Dict[str, Any]:
        return {
            "n1": node(None, ["n2"], "user", "Hi"),
            "n2": node("n1", [], "assistant", "Hello!"),
        }

    @staticmethod
    def simple_export() -> Dict[str, Any]:
        """One conversation, two messages, no folders"""
        return {"conversations": [{"id": "c1", "title": "Test", "mapping": MockExports.simple_mapping()}]}

    @staticmethod
    def branching_mapping() -> Dict[str, Any]:
        """A regenerated reply: root has two children, only the first is on the active branch"""
        return {
            "root": node(None, ["q1"]),
            "q1": node("root", ["a1", "a1-alt"], "user", "What is a python decorator?"),
            "a1": node("q1", ["q2"], "assistant", "A decorator wraps a function."),
            "a1-alt": node("q1", [], "assistant", "Regenerated answer about decorators."),
            "q2": node("a1", [], "user", "Show an example"),
        }

    @staticmethod
    def two_root_mapping() -> Dict[str, Any]:
        return {
            "r1": node(None, [], "user", "first root"),
            "r2": node(None, [], "user", "second root"),
        }

    @staticmethod
    def full_export() -> Dict[str, Any]:
        """Folders, tags-to-be, a branching conversation, string-encoded mapping and bad entries"""
        return {
            "conversations": [
                {
                    "id": "c1",
                    "title": "Python decorators",
                    "create_time": 1700000000.5,
                    "update_time": "2024-01-02T10:00:00Z",
                    "mapping": MockExports.branching_mapping(),
                    "folder_id": "f1",
                },
                {
                    "id": "c2",
                    "title": "Sourdough starter",
                    "mapping": json.dumps({
                        "a": node(None, ["b"], "user", "How do I feed a sourdough starter?"),
                        "b": node("a", [], "assistant", "Feed it flour and water daily."),
                    }),
                    "folder_id": "f2",
                },
                {
                    "id": "c3",
                    "title": "Trip planning",
                    "mapping": MockExports.simple_mapping(),
                    "folder_id": "missing-folder",
                },
                {"id": "c4", "title": "No mapping at all"},
                {"title": "Entry without id"},
                {"id": "c5"},
            ],
            "folders": [
                {"id": "f1", "name": "Programming", "conversation_ids": ["c1", 7, None]},
                {"id": "f2", "name": "Cooking", "conversation_ids": ["c2"]},
                {"id": "f3", "name": "Empty folder", "conversation_ids": []},
                {"name": "Folder without id"},
            ],
        }

    @staticmethod
    def bare_array_export() -> List[Dict[str, Any]]:
        return [
            {"id": "b1", "title": "Bare one", "mapping": MockExports.simple_mapping()},
            {"id": "b2", "title": "Bare two"},
        ]


def as_bytes(payload) -> bytes:
    return json.dumps(payload).encode("utf-8")
