"""Coarse data-type compatibility between a source and target column."""

_TYPE_FAMILIES = {
    "int": "integer_family",
    "bigint": "integer_family",
    "smallint": "integer_family",
    "tinyint": "integer_family",
    "uniqueidentifier": "guid",
    "varchar": "string_family",
    "nvarchar": "string_family",
    "char": "string_family",
    "nchar": "string_family",
}


def normalize_type(data_type: str | None) -> str:
    """Map a vendor type name to its family, or to itself lower-cased."""
    normalized = (data_type or "").strip().lower()
    return _TYPE_FAMILIES.get(normalized, normalized)


def are_compatible(source_type: str | None, target_type: str | None) -> bool:
    """Return True when both types fall into the same family.

    No width or precision rules apply: ``int`` and ``bigint`` match, ``int``
    and ``decimal`` do not.
    """
    return normalize_type(source_type) == normalize_type(target_type)
