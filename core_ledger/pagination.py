"""
Pagination Module

Page/limit parsing and the pagination metadata returned with list results.
"""

from dataclasses import dataclass
from typing import Any, Tuple
import math

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 20

# Upper bounds keep the row offset inside a 64-bit integer
MAX_PAGE = 1_000_000
MAX_LIMIT = 100


def _positive_int(value: Any, default: int, maximum: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        return default
    if number <= 0:
        return default
    return min(number, maximum)


def parse_page_params(page: Any = None, limit: Any = None) -> Tuple[int, int]:
    """
    Missing, non-numeric or non-positive values fall back to the defaults;
    values above MAX_PAGE or MAX_LIMIT are clamped to them
    """
    return (
        _positive_int(page, DEFAULT_PAGE, MAX_PAGE),
        _positive_int(limit, DEFAULT_LIMIT, MAX_LIMIT)
    )


def page_offset(page: int, limit: int) -> int:
    return (page - 1) * limit


@dataclass(frozen=True)
class PageInfo:
    """Pagination metadata for a list response"""
    current_page: int
    total_pages: int
    total_items: int
    limit: int
    has_more: bool

    @classmethod
    def build(cls, page: int, limit: int, total_items: int) -> 'PageInfo':
        return cls(
            current_page=page,
            total_pages=math.ceil(total_items / limit),
            total_items=total_items,
            limit=limit,
            has_more=page * limit < total_items
        )
