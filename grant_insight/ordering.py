import math
from typing import Callable, Dict, Iterable, List, Tuple

from .schemas import Grant, SortKey

DEFAULT_PAGE_SIZE = 12
MIN_PAGE_SIZE = 6
MAX_PAGE_SIZE = 30


def _created(grant: Grant) -> float:
    return grant.created_at.timestamp()


# 同順位は新しい順、さらに ID 順で決定的にする
_SORT_KEYS: Dict[SortKey, Callable[[Grant], Tuple]] = {
    SortKey.DATE_DESC: lambda g: (-_created(g), g.id),
    SortKey.DATE_ASC: lambda g: (_created(g), g.id),
    SortKey.AMOUNT_DESC: lambda g: (-g.max_amount_numeric, -_created(g), g.id),
    SortKey.AMOUNT_ASC: lambda g: (g.max_amount_numeric, -_created(g), g.id),
    SortKey.DEADLINE_ASC: lambda g: (
        g.deadline_timestamp is None,
        g.deadline_timestamp or 0,
        -_created(g),
        g.id,
    ),
    SortKey.SUCCESS_RATE_DESC: lambda g: (-(g.success_rate or 0), -_created(g), g.id),
    SortKey.FEATURED_FIRST: lambda g: (not g.is_featured, -_created(g), g.id),
}


def sort_grants(grants: Iterable[Grant], sort: SortKey = SortKey.DATE_DESC) -> List[Grant]:
    """並び順キーに従って並べ替えます。締切なしは末尾、成功率なしは 0 として扱います。"""
    return sorted(grants, key=_SORT_KEYS[sort])


def clamp_page_size(page_size: int) -> int:
    return max(MIN_PAGE_SIZE, min(MAX_PAGE_SIZE, page_size))


def page_window(page: int, page_size: int) -> Tuple[int, int]:
    """(offset, limit) を返します。page は 1 始まり。"""
    page = max(1, page)
    page_size = clamp_page_size(page_size)
    return (page - 1) * page_size, page_size


def total_pages(total_count: int, page_size: int) -> int:
    return math.ceil(total_count / clamp_page_size(page_size)) if total_count > 0 else 0
