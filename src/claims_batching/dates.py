"""Processing-date cost curve.

Processing gets more expensive as the month goes on: the day factor ramps
linearly from 0.2 on the 1st to 0.5 on the last day of the month. The optimal
date pool ranks every day of the current month plus the first days of the next
one by that factor, and each priority tier draws from its own slice of it.
"""
import calendar
from datetime import date, timedelta
from typing import List, Union

FIRST_DAY_FACTOR = 0.2
LAST_DAY_FACTOR = 0.5
NEXT_MONTH_LOOKAHEAD_DAYS = 10

HIGH_PRIORITY_SLICE = slice(0, 5)
MEDIUM_PRIORITY_SLICE = slice(5, 15)
LOW_PRIORITY_SLICE = slice(15, None)


def days_in_month(value: date) -> int:
    return calendar.monthrange(value.year, value.month)[1]


def day_factor(value: Union[date, str]) -> float:
    """Cost factor for processing on ``value``, between 0.2 and 0.5."""
    if isinstance(value, str):
        value = date.fromisoformat(value)
    last_day = days_in_month(value)
    progress = (value.day - 1) / (last_day - 1)
    return round(FIRST_DAY_FACTOR + (LAST_DAY_FACTOR - FIRST_DAY_FACTOR) * progress, 4)


def first_of_next_month(value: date) -> date:
    return value.replace(day=1) + timedelta(days=days_in_month(value))


def find_optimal_dates(today: date) -> List[date]:
    """Candidate processing dates ordered from cheapest to most expensive."""
    month_start = today.replace(day=1)
    candidates = [month_start + timedelta(days=offset) for offset in range(days_in_month(today))]
    next_month = first_of_next_month(today)
    candidates.extend(next_month + timedelta(days=offset) for offset in range(NEXT_MONTH_LOOKAHEAD_DAYS))
    return sorted(candidates, key=lambda candidate: (day_factor(candidate), candidate))


def priority_slice(priority_level: int) -> slice:
    if priority_level >= 4:
        return HIGH_PRIORITY_SLICE
    if priority_level >= 2:
        return MEDIUM_PRIORITY_SLICE
    return LOW_PRIORITY_SLICE


def dates_for_priority(pool: List[date], priority_level: int) -> List[date]:
    return pool[priority_slice(priority_level)]
