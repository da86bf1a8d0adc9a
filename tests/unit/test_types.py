"""
Unit tests for changes feed pages and records.
"""

import pytest

from changes_sdk.errors import MalformedResponseError
from changes_sdk.types import Batch, ChangeRecord, normalize_position


class TestChangeRecord:
    """Tests for ChangeRecord."""

    def test_from_dict(self):
        data = {
            "seq": "3-g1AAAA",
            "id": "doc1",
            "changes": [{"rev": "2-abc"}],
            "deleted": True,
            "extra": "kept",
        }
        record = ChangeRecord.from_dict(data)

        assert record.id == "doc1"
        assert record.seq == "3-g1AAAA"
        assert record.changes == [{"rev": "2-abc"}]
        assert record.deleted is True
        assert record.doc is None
        assert record.to_dict() == data

    def test_to_dict_without_raw(self):
        record = ChangeRecord(id="doc2", changes=[{"rev": "1-x"}], doc={"_id": "doc2"})
        assert record.to_dict() == {"id": "doc2", "changes": [{"rev": "1-x"}], "doc": {"_id": "doc2"}}

    def test_non_object_entry_is_malformed(self):
        with pytest.raises(MalformedResponseError):
            ChangeRecord.from_dict("doc1")


class TestBatch:
    """Tests for Batch.from_response."""

    def test_full_page(self):
        batch = Batch.from_response(
            {
                "results": [{"id": "a", "changes": []}, {"id": "b", "changes": []}],
                "last_seq": "2-0",
                "pending": 5,
            }
        )
        assert [r.id for r in batch.results] == ["a", "b"]
        assert batch.last_seq == "2-0"
        assert batch.pending == 5

    def test_missing_keys(self):
        """Absent results stay None; records treats them as empty."""
        batch = Batch.from_response({})
        assert batch.results is None
        assert batch.records == []
        assert batch.last_seq is None
        assert batch.pending is None

    def test_empty_results_are_not_none(self):
        batch = Batch.from_response({"results": [], "last_seq": "1-0"})
        assert batch.results == []

    def test_integer_last_seq_normalized(self):
        assert Batch.from_response({"results": [], "last_seq": 42}).last_seq == "42"

    @pytest.mark.parametrize(
        "body",
        [
            "<html>502 Bad Gateway</html>",
            ["results"],
            None,
            {"results": {"id": "a"}},
            {"results": ["a"]},
            {"results": [], "last_seq": {"seq": 1}},
            {"results": [], "last_seq": True},
        ],
    )
    def test_malformed_bodies(self, body):
        with pytest.raises(MalformedResponseError):
            Batch.from_response(body)


class TestNormalizePosition:
    def test_strings_and_ints(self):
        assert normalize_position("now") == "now"
        assert normalize_position(0) == "0"

    @pytest.mark.parametrize("value", [1.5, None, True, ["1"]])
    def test_rejects_other_types(self, value):
        with pytest.raises(TypeError):
            normalize_position(value)
