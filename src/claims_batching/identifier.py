from datetime import date
from typing import List, Set

MONTH_ABBREVIATIONS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def format_batch_date(value: date) -> str:
    """Format a date the way batch IDs show it, e.g. ``Apr 5 2025``."""
    return f"{MONTH_ABBREVIATIONS[value.month - 1]} {value.day} {value.year}"


def batch_identifier(provider_name: str, batch_date: date, sequence: int = 1) -> str:
    base = f"{provider_name} {format_batch_date(batch_date)}"
    if sequence > 1:
        return f"{base} ({sequence})"
    return base


def assign_batch_ids(provider_name: str, batch_date: date, count: int, taken: Set[str]) -> List[str]:
    """Generate ``count`` IDs for one provider and date, skipping any in ``taken``.

    ``taken`` is updated with the new IDs so later calls in the same run see them.
    """
    ids: List[str] = []
    sequence = 1
    while len(ids) < count:
        candidate = batch_identifier(provider_name, batch_date, sequence)
        sequence += 1
        if candidate in taken:
            continue
        taken.add(candidate)
        ids.append(candidate)
    return ids
