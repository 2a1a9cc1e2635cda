"""
cmdb/differ.py -- Record Differencer.

compare(snapshot, record) lists every field where the live snapshot and the
stored record disagree. Nothing is written and no approval state is set:
every FieldDiff starts with apply=False.

Equality (see cmdb/fields.py): empty/None on both sides is equal, strings
match exactly including case, RAM is compared at two decimal places.

Fields fed by a fact group that failed during collection are left out when
a record exists, so applying "all" keeps the stored values for them.
"""

from typing import Optional

from cmdb.fields import field_root, ordered_keys, record_values, snapshot_values, unavailable_fields, values_equal
from cmdb.models import ComparisonResult, DeviceRecord, FieldDiff
from core.models import Snapshot


def compare(
    snapshot: Snapshot,
    record: Optional[DeviceRecord],
    session_id: Optional[str] = None,
) -> ComparisonResult:
    """Return the field-level delta between snapshot and record.

    With no stored record every snapshot field is reported with old_value
    None, which makes the result the basis for an Add rather than an Update.
    """
    new_values = snapshot_values(snapshot)
    if record is None:
        diffs = [FieldDiff(field=key, old_value=None, new_value=new_values[key]) for key in ordered_keys(new_values)]
        return ComparisonResult(target=snapshot.target, snapshot=snapshot, record=None, diffs=diffs, session_id=session_id)

    old_values = record_values(record)
    unknown = unavailable_fields(snapshot.failed_groups)
    diffs = []
    for key in ordered_keys(old_values, new_values):
        if field_root(key) in unknown:
            continue
        old = old_values.get(key)
        new = new_values.get(key)
        if not values_equal(old, new):
            diffs.append(FieldDiff(field=key, old_value=old, new_value=new))
    return ComparisonResult(target=snapshot.target, snapshot=snapshot, record=record, diffs=diffs, session_id=session_id)
