"""Merge engine: field-level reconciliation of a fetched sample with a stored one.

Right-biased union: for each measurement field the incoming value wins when
it is not None, otherwise the existing value is kept. A None never erases
a known value, so repeated or overlapping syncs can only widen a record.

``origin`` is the exception: when an interval row and a segment row land on
one key the most specific origin is kept regardless of arrival order, so
re-running the same syncs in a different order yields the same record.

Summary rows never share a key with measured rows. Their day totals would
become summable the moment the row stopped being a summary, so a measured
row displaces a summary stamped at its key and a summary arriving at a
measured key is discarded.
"""

from vitals.domain.models import MERGEABLE_FIELDS, RecordOrigin, SampleRecord

# Lower rank wins.
_ORIGIN_RANK = {
    RecordOrigin.INTERVAL: 0,
    RecordOrigin.SEGMENT: 1,
    RecordOrigin.SUMMARY: 2,
}


def merge_origin(existing: RecordOrigin | None, incoming: RecordOrigin | None) -> RecordOrigin | None:
    if existing is None or incoming is None:
        return existing or incoming
    return min(existing, incoming, key=_ORIGIN_RANK.__getitem__)


def _rebind(record: SampleRecord, user_id: str) -> SampleRecord:
    if record.user_id == user_id:
        return record
    return record.model_copy(update={"user_id": user_id})


def merge(existing: SampleRecord | None, incoming: SampleRecord, user_id: str) -> SampleRecord:
    """Combine ``incoming`` with the record already stored at the same key.

    Callers must only pass an ``existing`` record whose timestamp matches
    ``incoming``; the orchestrator guarantees this by looking the record up
    by the incoming key.
    """
    if existing is None:
        return _rebind(incoming, user_id)

    if existing.is_summary != incoming.is_summary:
        return existing if incoming.is_summary else _rebind(incoming, user_id)

    updates = {
        name: getattr(incoming, name)
        for name in MERGEABLE_FIELDS
        if name != "origin" and getattr(incoming, name) is not None
    }
    origin = merge_origin(existing.origin, incoming.origin)
    if origin != existing.origin:
        updates["origin"] = origin
    if not updates:
        return existing
    return existing.model_copy(update=updates)


def changed_fields(before: SampleRecord | None, after: SampleRecord) -> list[str]:
    """Names of measurement fields whose value differs between two versions."""
    if before is None:
        return [name for name in MERGEABLE_FIELDS if getattr(after, name) is not None]
    return [name for name in MERGEABLE_FIELDS if getattr(before, name) != getattr(after, name)]
