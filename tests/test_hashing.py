"""Tests for canonical hashing."""

import hashlib

from context_pools.core.hashing import (
    METADATA_VIEW_FIELDS,
    canonical_json,
    compute_content_hash,
    compute_metadata_view_hash,
    compute_object_hash,
)
from context_pools.types import ObjectType


class TestContentHash:
    def test_deterministic(self):
        assert compute_content_hash("hello world") == compute_content_hash("hello world")

    def test_matches_sha256(self):
        assert compute_content_hash("hello world") == hashlib.sha256(b"hello world").hexdigest()

    def test_distinct_content_distinct_hash(self):
        samples = ["", "a", "b", "hello world", "hello world\n", "hello  world"]
        hashes = {compute_content_hash(s) for s in samples}
        assert len(hashes) == len(samples)

    def test_null_content(self):
        assert compute_content_hash(None) is None

    def test_unicode(self):
        assert compute_content_hash("héllo") == hashlib.sha256("héllo".encode("utf-8")).hexdigest()


class TestObjectHash:
    def _doc(self, **overrides):
        doc = {
            "id": "file:/tmp/a.py",
            "type": "file",
            "content": "x = 1",
            "path": "/tmp/a.py",
            "char_count": 5,
            "content_hash": "abc",
            "metadata_view_hash": "def",
            "object_hash": "ghi",
            "timestamp": "2026-01-15T10:00:00+00:00",
        }
        doc.update(overrides)
        return doc

    def test_invariant_under_timestamps(self):
        a = self._doc()
        b = self._doc(timestamp="2030-06-01T00:00:00+00:00", created_at="x", updated_at="y")
        assert compute_object_hash(a) == compute_object_hash(b)

    def test_invariant_under_hash_fields(self):
        a = self._doc()
        b = self._doc(content_hash="zzz", metadata_view_hash="yyy", object_hash="xxx")
        assert compute_object_hash(a) == compute_object_hash(b)

    def test_key_order_irrelevant(self):
        a = self._doc()
        b = dict(reversed(list(a.items())))
        assert compute_object_hash(a) == compute_object_hash(b)

    def test_content_change_changes_hash(self):
        assert compute_object_hash(self._doc()) != compute_object_hash(self._doc(content="x = 2"))


class TestMetadataViewHash:
    def test_only_listed_fields_matter(self):
        fields = {"id": "file:/a", "type": "file", "path": "/a", "file_type": "py", "char_count": 3, "nickname": None}
        base = compute_metadata_view_hash(ObjectType.FILE, fields)
        assert compute_metadata_view_hash(ObjectType.FILE, {**fields, "content": "other"}) == base
        assert compute_metadata_view_hash(ObjectType.FILE, {**fields, "char_count": 4}) != base

    def test_accepts_type_string(self):
        fields = {"id": "t1", "type": "toolcall", "tool": "read", "args_display": "{}", "status": "ok"}
        assert compute_metadata_view_hash("toolcall", fields) == compute_metadata_view_hash(ObjectType.TOOLCALL, fields)

    def test_every_type_has_a_field_list(self):
        assert set(METADATA_VIEW_FIELDS) == set(ObjectType)


class TestCanonicalJson:
    def test_sorted_and_compact(self):
        assert canonical_json({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'

    def test_enum_values(self):
        assert canonical_json({"type": ObjectType.CHAT}) == '{"type":"chat"}'
