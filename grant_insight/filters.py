"""リクエストパラメータ（クエリ文字列 / フォーム）を SearchFilter に正規化する。

不正な値でリクエスト全体をエラーにはしない。未知の値はその項目の既定値に戻す。
"""

from typing import List, Mapping, Optional, Sequence, Union

from .geography import normalize_region
from .ordering import DEFAULT_PAGE_SIZE, clamp_page_size
from .schemas import AmountBucket, ApplicationStatus, Difficulty, SearchFilter, SortKey
from .utils import split_list_value

RawValue = Union[str, Sequence[str]]

# 新しい・具体的な名前を先に並べる（先頭が優先）
TEXT_KEYS = ("search", "s")
CATEGORY_KEYS = ("grant_category", "categories", "category")
TAG_KEYS = ("grant_tag", "tags", "tag")
PREFECTURE_KEYS = ("grant_prefecture", "prefectures", "prefecture")
MUNICIPALITY_KEYS = ("grant_municipality", "municipalities", "municipality")
FEATURED_KEYS = ("only_featured", "featured", "is_featured")
PAGE_KEYS = ("page", "paged")
PAGE_SIZE_KEYS = ("posts_per_page", "per_page")

# 画面のステータス値 → 保存値
STATUS_ALIASES = {
    "active": ApplicationStatus.OPEN,
    "open": ApplicationStatus.OPEN,
    "upcoming": ApplicationStatus.UPCOMING,
    "closed": ApplicationStatus.CLOSED,
}

SORT_ALIASES = {"featured": SortKey.FEATURED_FIRST}

TRUTHY = ("1", "true", "yes", "on")


def _pick(params: Mapping[str, RawValue], keys: Sequence[str]) -> Optional[RawValue]:
    for key in keys:
        value = params.get(key)
        if value is None:
            continue
        if isinstance(value, str):
            if value.strip():
                return value
        elif any(str(v).strip() for v in value):
            return value
    return None


def _scalar(value: Optional[RawValue]) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    # 繰り返しキーの場合は最後の値を使う
    values = [str(v).strip() for v in value if str(v).strip()]
    return values[-1] if values else ""


def _to_int(value: Optional[RawValue], default: int) -> int:
    try:
        return int(float(_scalar(value)))
    except (ValueError, OverflowError):
        return default


def _statuses(value: Optional[RawValue]) -> List[ApplicationStatus]:
    result: List[ApplicationStatus] = []
    for token in split_list_value(value):
        status = STATUS_ALIASES.get(token.lower())
        if status is not None and status not in result:
            result.append(status)
    return result


def _difficulties(value: Optional[RawValue]) -> List[Difficulty]:
    result: List[Difficulty] = []
    for token in split_list_value(value):
        try:
            difficulty = Difficulty(token.lower())
        except ValueError:
            continue
        if difficulty not in result:
            result.append(difficulty)
    return result


def _amount_bucket(value: Optional[RawValue]) -> Optional[AmountBucket]:
    try:
        return AmountBucket(_scalar(value))
    except ValueError:
        return None


def _sort(value: Optional[RawValue]) -> SortKey:
    token = _scalar(value).lower()
    if token in SORT_ALIASES:
        return SORT_ALIASES[token]
    try:
        return SortKey(token)
    except ValueError:
        return SortKey.DATE_DESC


def normalize_filters(params: Mapping[str, RawValue]) -> SearchFilter:
    """生のパラメータを SearchFilter に変換します（副作用なし・例外なし）。"""
    region = normalize_region(_scalar(params.get("region")))
    page = max(1, _to_int(_pick(params, PAGE_KEYS), 1))
    page_size = clamp_page_size(_to_int(_pick(params, PAGE_SIZE_KEYS), DEFAULT_PAGE_SIZE))

    return SearchFilter(
        text=" ".join(_scalar(_pick(params, TEXT_KEYS)).split()),
        category_slugs=split_list_value(_pick(params, CATEGORY_KEYS)),
        tag_slugs=split_list_value(_pick(params, TAG_KEYS)),
        prefecture_slugs=split_list_value(_pick(params, PREFECTURE_KEYS)),
        municipality_slugs=split_list_value(_pick(params, MUNICIPALITY_KEYS)),
        region=region,
        amount_bucket=_amount_bucket(params.get("amount")),
        statuses=_statuses(params.get("status")),
        difficulties=_difficulties(params.get("difficulty")),
        featured_only=_scalar(_pick(params, FEATURED_KEYS)).lower() in TRUTHY,
        sort=_sort(params.get("sort")),
        page=page,
        page_size=page_size,
    )
