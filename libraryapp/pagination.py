import math
from typing import List, Sequence, TypeVar

T = TypeVar("T")


def paginate(items: Sequence[T], page: int, size: int) -> List[T]:
    """Return the 1-based ``page`` of ``items``; out-of-range pages are empty."""
    start = max(0, (page - 1) * size)
    end = min(start + size, len(items))
    return list(items[start:end])


def get_total_pages(total_items: int, page_size: int) -> int:
    return math.ceil(total_items / page_size)


def build_page(items: Sequence[T], page: int, size: int) -> dict:
    return {
        "items": paginate(items, page, size),
        "current_page": page,
        "total_pages": get_total_pages(len(items), size),
    }
