"""
Differ - Field-level comparison of desired and observed specs.

Collection fields declared unordered are compared as multisets of their
normalized elements, so a remote reordering of otherwise identical
entries is never reported as a change, while a duplicated entry is.
"""

import logging
from collections import Counter
from typing import Any, Dict, List

from resources import DiffResult, DriftRecord, ObservedState, ResourceSpec

logger = logging.getLogger(__name__)


def _is_empty(value: Any) -> bool:
    return value is None or (
        isinstance(value, (list, tuple, set, frozenset, dict, str)) and not value
    )


def _freeze(value: Any) -> Any:
    """Convert a field value into a hashable, comparable form."""
    if isinstance(value, dict):
        return tuple(sorted((str(k), _freeze(v)) for k, v in value.items()))
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(_freeze(v) for v in value)
    return value


def _element_counts(value: Any) -> Counter:
    """Count normalized elements; order is ignored, multiplicity is not."""
    if _is_empty(value):
        return Counter()
    if isinstance(value, (list, tuple, set, frozenset)):
        return Counter(_freeze(v) for v in value)
    return Counter([_freeze(value)])


def values_equal(desired: Any, observed: Any) -> bool:
    """Positional equality, treating None and empty collections alike."""
    if _is_empty(desired) and _is_empty(observed):
        return True
    return _freeze(desired) == _freeze(observed)


def project(desired: ResourceSpec, observed: ObservedState) -> ResourceSpec:
    """
    Build the spec-shaped projection of an observed state.

    Only fields present in the desired spec are kept; computed attributes
    (ARNs, timestamps, status) never take part in a diff.
    """
    return ResourceSpec(
        kind=desired.kind,
        fields={name: observed.fields.get(name) for name in desired.fields},
        immutable_fields=desired.immutable_fields,
        unordered_fields=desired.unordered_fields,
    )


def diff(desired: ResourceSpec, observed: ResourceSpec) -> DiffResult:
    """
    Compute the changes needed to move ``observed`` to ``desired``.

    Args:
        desired: The desired spec.
        observed: Spec-shaped projection of the observed state.

    Returns:
        DiffResult with changed mutable and immutable field names, plus
        unordered fields whose elements only moved position.
    """
    result = DiffResult()
    immutable = desired.immutable_fields | observed.immutable_fields
    unordered = desired.unordered_fields | observed.unordered_fields

    for name, desired_value in desired.fields.items():
        observed_value = observed.fields.get(name)

        if name in unordered:
            if _element_counts(desired_value) != _element_counts(observed_value):
                changed = True
            else:
                changed = False
                if not values_equal(desired_value, observed_value):
                    result.reordered.add(name)
        else:
            changed = not values_equal(desired_value, observed_value)

        if changed:
            if name in immutable:
                result.changed_immutable.add(name)
            else:
                result.changed_mutable.add(name)

    if result.reordered:
        logger.debug(
            f"Ignoring element reordering in {desired.kind} fields: "
            f"{sorted(result.reordered)}"
        )
    return result


def drift_records(desired: ResourceSpec, observed: ObservedState) -> List[DriftRecord]:
    """
    Describe how the observed object drifted from the desired spec.

    Reordered-only collections are included with ``reordered_only=True``
    so callers can surface them without treating them as changes.
    """
    projection = project(desired, observed)
    result = diff(desired, projection)

    records = []
    for name in sorted(result.changed_mutable | result.changed_immutable):
        records.append(
            DriftRecord(
                field=name,
                desired=desired.fields.get(name),
                observed=projection.fields.get(name),
            )
        )
    for name in sorted(result.reordered):
        records.append(
            DriftRecord(
                field=name,
                desired=desired.fields.get(name),
                observed=projection.fields.get(name),
                reordered_only=True,
            )
        )
    return records


def changed_values(desired: ResourceSpec, field_names) -> Dict[str, Any]:
    """Return the desired values for the given field names."""
    return {name: desired.fields.get(name) for name in sorted(field_names)}
