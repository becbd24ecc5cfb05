"""Tests for ChatGPT export ingestion functionality."""

import pytest
import json
from pathlib import Path
from unittest.mock import patch

from chatvault.db import DB
from chatvault.errors import EmptyFile, InvalidExportFormat, MalformedJSON, StorageError
from chatvault.ingest_chatgpt import (
    ImportPipeline, ImportState, build_conversation, build_folder, clear_data, import_bytes,
    ingest_export, load_all, validate_export,
)
from chatvault.jsonvalue import JSONValue
from chatvault.tree import conversation_messages
from tests.fixtures.mock_data import MockExports, as_bytes, node


class TestValidation:
    """Top-level shape checks happen before the store is touched."""

    def test_empty_file(self):
        with pytest.raises(EmptyFile) as exc:
            validate_export(b"")
        assert str(exc.value) == "The selected file is empty."

    def test_malformed(self):
        with pytest.raises(MalformedJSON):
            validate_export(b'{"conversations": [')

    @pytest.mark.parametrize("payload", [
        b"[]",
        b'{"foo": []}',
        b'{"conversations": {}}',
        b'"just a string"',
        b"42",
        b'[{"id": "only-id"}]',
        b'[1, 2]',
    ])
    def test_invalid_shapes(self, payload):
        with pytest.raises(InvalidExportFormat) as exc:
            validate_export(payload)
        assert "not a valid ChatGPT export" in str(exc.value)

    def test_object_shape(self):
        payload = validate_export(as_bytes(MockExports.full_export()))
        assert len(payload.conversations) == 6
        assert len(payload.folders) == 4

    def test_bare_array_shape(self):
        payload = validate_export(as_bytes(MockExports.bare_array_export()))
        assert len(payload.conversations) == 2
        assert payload.folders == ()

    def test_non_array_folders_ignored(self):
        payload = validate_export(b'{"conversations": [], "folders": "nope"}')
        assert payload.folders == ()


class TestEntryProjection:
    def test_build_conversation_numeric_times(self):
        record, mapping = build_conversation(JSONValue({
            "id": "c", "title": "T", "create_time": 1700000000, "update_time": True,
        }))
        assert record.create_time == "1700000000"
        assert record.update_time is None
        assert record.mapping is None
        assert mapping is None

    def test_build_conversation_requires_id_and_title(self):
        assert build_conversation(JSONValue({"id": "c"})) == (None, None)
        assert build_conversation(JSONValue({"title": "T"})) == (None, None)
        assert build_conversation(JSONValue({"id": "", "title": "T"})) == (None, None)
        assert build_conversation(JSONValue({"id": 5, "title": "T"})) == (None, None)

    def test_mapping_canonicalised_from_string_or_object(self):
        as_object, _ = build_conversation(JSONValue({"id": "a", "title": "T", "mapping": {"n": {"parent": None}}}))
        as_text, _ = build_conversation(JSONValue({"id": "a", "title": "T", "mapping": '{ "n" : {"parent": null} }'}))
        assert as_object.mapping == as_text.mapping == '{"n":{"parent":null}}'

    def test_non_json_mapping_string_kept_verbatim(self):
        record, mapping = build_conversation(JSONValue({"id": "a", "title": "T", "mapping": "not json"}))
        assert record.mapping == "not json"
        assert mapping is None

    def test_build_folder_filters_ids(self):
        assert build_folder(JSONValue({"id": "f", "name": "N", "conversation_ids": ["a", 1, None, "b"]})) == \
            ("f", "N", ["a", "b"])
        assert build_folder(JSONValue({"id": "f", "name": "N"})) == ("f", "N", [])
        assert build_folder(JSONValue({"name": "N"})) is None


class TestImportPipeline:
    """End-to-end import into a temporary store."""

    def test_simple_export(self, temp_db_path, simple_export_bytes):
        result = import_bytes(simple_export_bytes, temp_db_path)
        assert len(result.conversations) == 1
        convo = result.conversations[0]
        assert convo.title == "Test"
        assert convo.folder_id is None
        assert convo.tags == []
        assert [(m.author, m.text) for m in conversation_messages(convo)] == [
            ("user", "Hi"), ("assistant", "Hello!"),
        ]
        assert result.messages_indexed == 2

    def test_full_export_counts(self, temp_db_path, full_export_bytes):
        result = import_bytes(full_export_bytes, temp_db_path)
        assert result.summary() == {
            "conversations_imported": 4,
            "conversations_skipped": 2,
            "folders_imported": 3,
            "folders_skipped": 1,
            "messages_indexed": 7,
            "ambiguous_roots": 0,
        }
        assert [c.id for c in result.conversations] == ["c1", "c2", "c3", "c4"]
        c1 = result.conversations[0]
        assert c1.create_time == "1700000000.5"
        assert c1.update_time == "2024-01-02T10:00:00Z"
        with DB(temp_db_path) as db:
            assert db.fetch_folders()[0].conversation_ids == ["c1"]
            assert db.search_messages_fts("regenerated") == []
            assert [r.conversation_id for r in db.search_messages_fts("sourdough")] == ["c2"]

    def test_bare_array(self, temp_db_path):
        result = import_bytes(as_bytes(MockExports.bare_array_export()), temp_db_path)
        assert [c.id for c in result.conversations] == ["b1", "b2"]

    def test_state_transitions(self, temp_db_path, simple_export_bytes):
        states = []
        pipeline = ImportPipeline(temp_db_path, on_state=states.append)
        pipeline.run(simple_export_bytes)
        assert states == [ImportState.VALIDATING, ImportState.CLEARING, ImportState.INSERTING, ImportState.DONE]

    def test_reimport_is_idempotent(self, temp_db_path, full_export_bytes):
        first = import_bytes(full_export_bytes, temp_db_path)
        second = import_bytes(full_export_bytes, temp_db_path)
        assert [c.to_dict() for c in first.conversations] == [c.to_dict() for c in second.conversations]
        with DB(temp_db_path) as db:
            assert db.table_counts()["messages_fts"] == 7

    def test_import_replaces_previous_snapshot(self, populated_db_path, simple_export_bytes):
        with DB(populated_db_path) as db:
            db.add_tag("old", "c1")
        result = import_bytes(simple_export_bytes, populated_db_path)
        assert [c.id for c in result.conversations] == ["c1"]
        assert result.conversations[0].tags == []
        with DB(populated_db_path) as db:
            assert db.fetch_folders() == []
            assert db.fetch_all_tags() == []

    def test_empty_conversations_array_clears_store(self, populated_db_path):
        result = import_bytes(b'{"conversations": []}', populated_db_path)
        assert result.conversations == []

    @pytest.mark.parametrize("payload", [b"", b"{", b"[]"])
    def test_failed_validation_leaves_store_unchanged(self, populated_db_path, payload):
        states = []
        with pytest.raises((EmptyFile, MalformedJSON, InvalidExportFormat)):
            ImportPipeline(populated_db_path, on_state=states.append).run(payload)
        assert states[-1] is ImportState.FAILED
        assert len(load_all(populated_db_path)) == 4

    def test_storage_failure_rolls_back_to_previous_snapshot(self, populated_db_path, simple_export_bytes):
        with patch.object(ImportPipeline, "_insert_conversations", side_effect=StorageError("disk full")):
            with pytest.raises(StorageError):
                import_bytes(simple_export_bytes, populated_db_path)
        assert [c.id for c in load_all(populated_db_path)] == ["c1", "c2", "c3", "c4"]

    def test_readers_see_previous_snapshot_mid_import(self, populated_db_path, simple_export_bytes):
        seen = {}

        def read_on_other_connection(state):
            if state is ImportState.INSERTING:
                # clear has run inside the open transaction
                seen["inserting"] = [c.id for c in load_all(populated_db_path)]

        ImportPipeline(populated_db_path, on_state=read_on_other_connection).run(simple_export_bytes)
        assert seen["inserting"] == ["c1", "c2", "c3", "c4"]
        assert [c.id for c in load_all(populated_db_path)] == ["c1"]

    def test_duplicate_ids_last_wins(self, temp_db_path):
        export = {"conversations": [
            {"id": "dup", "title": "First", "mapping": {"a": node(None, [], "user", "alpha words")}},
            {"id": "dup", "title": "Second", "mapping": {"a": node(None, [], "user", "beta words")}},
        ]}
        result = import_bytes(as_bytes(export), temp_db_path)
        assert [c.title for c in result.conversations] == ["Second"]
        with DB(temp_db_path) as db:
            assert db.search_messages_fts("alpha") == []
            assert len(db.search_messages_fts("words")) == 1

    def test_ambiguous_root_counted(self, temp_db_path):
        export = {"conversations": [{"id": "c", "title": "T", "mapping": MockExports.two_root_mapping()}]}
        result = import_bytes(as_bytes(export), temp_db_path)
        assert result.conversations_imported == 1
        assert result.ambiguous_roots == 1
        assert result.messages_indexed == 0

    def test_index_failure_keeps_conversation(self, temp_db_path, simple_export_bytes):
        with patch("chatvault.db.Database.insert_message_fts", side_effect=StorageError("fts broken")):
            result = import_bytes(simple_export_bytes, temp_db_path)
        assert result.conversations_imported == 1
        assert result.messages_indexed == 0


class TestFileHelpers:
    def test_ingest_from_directory(self, temp_db_path, tmp_path):
        (tmp_path / "conversations.json").write_text(json.dumps(MockExports.simple_export()))
        result = ingest_export(str(tmp_path), temp_db_path)
        assert result.conversations_imported == 1

    def test_ingest_from_file(self, temp_db_path, tmp_path):
        path = tmp_path / "export.json"
        path.write_text(json.dumps(MockExports.bare_array_export()))
        assert ingest_export(str(path), temp_db_path).conversations_imported == 2

    def test_missing_export(self, temp_db_path, tmp_path):
        with pytest.raises(FileNotFoundError):
            ingest_export(str(tmp_path), temp_db_path)

    def test_clear_data(self, populated_db_path):
        assert clear_data(populated_db_path) == []
        with DB(populated_db_path) as db:
            assert set(db.table_counts().values()) == {0}
