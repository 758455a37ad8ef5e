"""Structured differences between two DNS record collections.

Records are grouped by ``(type, name)``. Inside a group, records with the same
``content`` are paired first; whatever is left on both sides is paired in the
order the records were seen and reported as a content modification, and any
surplus becomes an addition or a removal.

Pairing is positional (i-th with i-th) in every step, so ``diff(a, b)`` is the
exact mirror of ``diff(b, a)`` even with duplicate records in a group.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

Record = Mapping[str, Any]

REPORTED_FIELDS = ("type", "name", "content", "ttl", "proxied", "priority")
METADATA_FIELDS = ("ttl", "proxied", "priority")


@dataclass
class RecordDiff:
    added: list[dict[str, Any]] = field(default_factory=list)
    removed: list[dict[str, Any]] = field(default_factory=list)
    modified: list[dict[str, dict[str, Any]]] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.modified)

    def to_dict(self) -> dict[str, Any]:
        return {"added": self.added, "removed": self.removed, "modified": self.modified}


def diff_key(record: Record) -> str:
    return f"{record.get('type')}::{record.get('name')}"


def pick(record: Record) -> dict[str, Any]:
    return {f: record.get(f) for f in REPORTED_FIELDS}


def _group(records: Iterable[Record]) -> dict[str, list[Record]]:
    groups: dict[str, list[Record]] = defaultdict(list)
    for rec in records:
        groups[diff_key(rec)].append(rec)
    return groups


def _metadata_differs(before: Record, after: Record) -> bool:
    return any(before.get(f) != after.get(f) for f in METADATA_FIELDS)


def _diff_group(from_recs: list[Record], to_recs: list[Record], result: RecordDiff) -> None:
    unmatched_from = list(range(len(from_recs)))
    unmatched_to: list[int] = []

    for ti, to_rec in enumerate(to_recs):
        match = next(
            (fi for fi in unmatched_from if from_recs[fi].get("content") == to_rec.get("content")),
            None,
        )
        if match is None:
            unmatched_to.append(ti)
            continue
        unmatched_from.remove(match)
        from_rec = from_recs[match]
        if _metadata_differs(from_rec, to_rec):
            result.modified.append({"before": pick(from_rec), "after": pick(to_rec)})

    for fi, ti in zip(unmatched_from, unmatched_to):
        result.modified.append({"before": pick(from_recs[fi]), "after": pick(to_recs[ti])})

    paired = min(len(unmatched_from), len(unmatched_to))
    for ti in unmatched_to[paired:]:
        result.added.append(pick(to_recs[ti]))
    for fi in unmatched_from[paired:]:
        result.removed.append(pick(from_recs[fi]))


def compute_diff(from_records: Iterable[Record], to_records: Iterable[Record]) -> RecordDiff:
    from_groups = _group(from_records)
    to_groups = _group(to_records)
    result = RecordDiff()

    keys = list(from_groups) + [k for k in to_groups if k not in from_groups]
    for key in keys:
        from_recs = from_groups.get(key, [])
        to_recs = to_groups.get(key, [])
        if not from_recs:
            result.added.extend(pick(r) for r in to_recs)
        elif not to_recs:
            result.removed.extend(pick(r) for r in from_recs)
        else:
            _diff_group(from_recs, to_recs, result)

    return result
