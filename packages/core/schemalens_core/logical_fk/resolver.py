"""Resolve naming prefixes and SQL identifiers to table ids."""

from __future__ import annotations

from collections.abc import Mapping

from schemalens_core.logical_fk.index import strip_brackets


def _plural_variants(prefix: str) -> list[str]:
    variants = [prefix, prefix + "s", prefix + "es"]
    if prefix.endswith("s"):
        variants.append(prefix[:-1])
    if prefix.endswith("y"):
        variants.append(prefix[:-1] + "ies")
    return variants


def try_resolve_table(prefix: str, table_ids: Mapping[str, int]) -> int | None:
    """Resolve a naming-convention prefix such as ``customer`` to a table id.

    Attempts, first hit wins: exact, ``+s``, ``+es``, trailing ``s`` dropped,
    trailing ``y`` replaced by ``ies``. ``table_ids`` is keyed by lower-cased
    table name.
    """
    if not prefix:
        return None
    for variant in _plural_variants(prefix.lower()):
        table_id = table_ids.get(variant)
        if table_id is not None:
            return table_id
    return None


def resolve_table_name(raw_identifier: str, table_ids: Mapping[str, int]) -> int | None:
    """Resolve an identifier from SQL text such as ``[dbo].[Orders]``."""
    if not raw_identifier:
        return None
    name = strip_brackets(raw_identifier).lower()
    table_id = table_ids.get(name)
    if table_id is not None:
        return table_id
    if "." in name:
        return table_ids.get(name.rsplit(".", 1)[1].strip())
    return None
