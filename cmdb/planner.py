"""
cmdb/planner.py -- Reconciliation Planner.

plan(comparison, selection) builds the record to persist: a copy of the
stored record (or a blank one for a new device) with the selected fields
overwritten by the snapshot values. Unselected fields keep what was stored.

The planner does not enforce "a new device needs a hostname"; that rule
belongs to the caller (cmdb/engine.py) and to validation before persistence.
"""

import copy
from collections.abc import Iterable
from typing import Union

from cmdb.fields import set_value, trim_slots
from cmdb.models import ComparisonResult, DeviceRecord

APPLY_ALL = "all"

Selection = Union[str, Iterable[str]]


def selected_fields(comparison: ComparisonResult, selection: Selection) -> list[str]:
    """Names of the diffs the selection picks, in diff order."""
    if isinstance(selection, str):
        if selection != APPLY_ALL:
            raise ValueError(f"selection must be '{APPLY_ALL}' or a collection of field names, got {selection!r}")
        return [d.field for d in comparison.diffs]
    wanted = set(selection)
    return [d.field for d in comparison.diffs if d.field in wanted]


def plan(comparison: ComparisonResult, selection: Selection = APPLY_ALL) -> DeviceRecord:
    record = copy.deepcopy(comparison.record) if comparison.record is not None else DeviceRecord()
    chosen = set(selected_fields(comparison, selection))
    for diff in comparison.diffs:
        if diff.field in chosen:
            set_value(record, diff.field, diff.new_value)
    trim_slots(record)
    return record
