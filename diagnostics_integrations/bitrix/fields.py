"""Field access across the shapes the portal returns records in."""

from typing import Any, Mapping, Optional

# Locations tried in order: top level, user-field map, generic fields map
_NESTED_MAPS = ("ufCrm", "fields")


def pick(record: Optional[Mapping[str, Any]], field_key: Optional[str]) -> Any:
    """
    Return the first non-None value for field_key, or None when absent

    Args:
        record: Raw record as returned by the portal
        field_key: Field code, e.g. "ufCrm5_1700000000"
    """
    if not record or not field_key:
        return None

    value = record.get(field_key)
    if value is not None:
        return value

    for nested in _NESTED_MAPS:
        container = record.get(nested)
        if isinstance(container, Mapping):
            value = container.get(field_key)
            if value is not None:
                return value
    return None
