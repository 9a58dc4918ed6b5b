"""Reconciliation of two collections of the same entity kind"""

from typing import Dict, List, Sequence, Tuple, TypeVar

from bizflow.models import Entity, Product, Supplier
from bizflow.utils.logging import get_logger

logger = get_logger(__name__)

E = TypeVar("E", bound=Entity)


def merge_collections(primary: Sequence[E], secondary: Sequence[E]) -> List[E]:
    """
    Merge two collections keyed by id.

    Primary entries always win on id collision, whatever their age; the
    secondary collection only contributes ids the primary does not know.

    Args:
        primary: Application-side collection (conflict winner)
        secondary: Spreadsheet-side collection (fills gaps only)

    Returns:
        Primary entries in their order, followed by secondary-only entries
    """
    merged: Dict[str, E] = {}

    for entity in primary:
        merged[entity.id] = entity

    added = 0
    for entity in secondary:
        if entity.id not in merged:
            merged[entity.id] = entity
            added += 1

    logger.debug(
        "Merged collections",
        primary=len(primary),
        secondary=len(secondary),
        added_from_secondary=added
    )
    return list(merged.values())


def merge_operations(
    primary: Tuple[Sequence[Product], Sequence[Supplier]],
    secondary: Tuple[Sequence[Product], Sequence[Supplier]],
) -> Tuple[List[Product], List[Supplier]]:
    """Apply merge_collections to the products and suppliers of the operations group"""
    return (
        merge_collections(primary[0], secondary[0]),
        merge_collections(primary[1], secondary[1]),
    )
