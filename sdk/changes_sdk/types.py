"""
Types for changes feed pages and records.

This module defines the data read from a `_changes` response:
- FeedPosition: Opaque sequence token (with NOW / BEGINNING literals)
- ChangeRecord: One document mutation
- Batch: One page, i.e. the result of a single successful exchange

Invariants:
    - Record order within a batch is the server's order
    - Positions are kept as strings; integer sequences are normalized
    - Unknown record fields are preserved in ChangeRecord.raw

How to change safely:
    - New response fields go on Batch with a None default
    - Keep from_response() lenient on missing keys, strict on wrong shapes
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .errors import MalformedResponseError

FeedPosition = str

NOW: FeedPosition = "now"
BEGINNING: FeedPosition = "0"


def normalize_position(value: Union[str, int]) -> FeedPosition:
    """Normalize a sequence value to its string form.

    CouchDB 1.x returns integer sequences, later versions opaque strings.
    Both are sent back verbatim as `since`.
    """
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise TypeError(f"Sequence must be str or int, got {type(value).__name__}")
    return str(value)


@dataclass
class ChangeRecord:
    """A single entry of the changes feed.

    Attributes:
        id: Document ID
        changes: Revision descriptors (opaque, typically {"rev": ...})
        seq: Sequence of this change, if the server sent one
        doc: Document body (only with include_docs)
        deleted: Whether the change is a deletion
        raw: The record exactly as received

    Example:
        {"seq": "2-g1AAAA", "id": "doc1", "changes": [{"rev": "1-abc"}]}
    """

    id: str
    changes: List[Any] = field(default_factory=list)
    seq: Any = None
    doc: Optional[Dict[str, Any]] = None
    deleted: bool = False
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ChangeRecord:
        """Create from a decoded result entry.

        Raises:
            MalformedResponseError: If the entry is not an object
        """
        if not isinstance(data, dict):
            raise MalformedResponseError(
                f"Change record must be an object, got {type(data).__name__}", data
            )
        changes = data.get("changes")
        return cls(
            id=str(data.get("id", "")),
            changes=list(changes) if isinstance(changes, list) else [],
            seq=data.get("seq"),
            doc=data.get("doc"),
            deleted=bool(data.get("deleted", False)),
            raw=data,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert back to the wire shape."""
        if self.raw:
            return dict(self.raw)
        result: Dict[str, Any] = {"id": self.id, "changes": list(self.changes)}
        if self.seq is not None:
            result["seq"] = self.seq
        if self.doc is not None:
            result["doc"] = self.doc
        if self.deleted:
            result["deleted"] = True
        return result

    def __str__(self) -> str:
        return f"ChangeRecord(id={self.id}, seq={self.seq})"


@dataclass
class Batch:
    """One page of the changes feed.

    Attributes:
        results: Records in server order, or None if the key was absent
        last_seq: Position valid after consuming this page
        pending: Server's hint of remaining changes
    """

    results: Optional[List[ChangeRecord]] = None
    last_seq: Optional[FeedPosition] = None
    pending: Optional[int] = None

    @property
    def records(self) -> List[ChangeRecord]:
        """Results, treating an absent list as empty."""
        return self.results or []

    @classmethod
    def from_response(cls, body: Any) -> Batch:
        """Interpret a decoded `_changes` response body.

        Args:
            body: Decoded JSON body

        Returns:
            Batch instance

        Raises:
            MalformedResponseError: If the body is not a changes page
        """
        if not isinstance(body, dict):
            raise MalformedResponseError(
                f"Changes response must be an object, got {type(body).__name__}", body
            )

        results: Optional[List[ChangeRecord]] = None
        if body.get("results") is not None:
            raw_results = body["results"]
            if not isinstance(raw_results, list):
                raise MalformedResponseError("'results' must be a list", body)
            results = [ChangeRecord.from_dict(r) for r in raw_results]

        last_seq: Optional[FeedPosition] = None
        if body.get("last_seq") is not None:
            try:
                last_seq = normalize_position(body["last_seq"])
            except TypeError as e:
                raise MalformedResponseError(f"Invalid 'last_seq': {e}", body) from e

        pending = body.get("pending")
        return cls(
            results=results,
            last_seq=last_seq,
            pending=pending if isinstance(pending, int) else None,
        )
