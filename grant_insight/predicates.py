"""正規化済みフィルターを、Grant に対する合成可能な条件へ変換する。

各ファセットが1つの条件グループになり、グループ同士は AND、グループ内の値は OR。
未設定のファセットは条件を作らない（全件一致に縮退し、0件には縮退しない）。
"""

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Optional, Protocol, Tuple

from .geography import MunicipalityLookup, prefectures_in_region, resolve_location
from .schemas import AmountBucket, Grant, Municipality, SearchFilter
from .utils import normalize_text

# 全文検索の対象フィールド
SEARCHABLE_FIELDS: Tuple[str, ...] = (
    "title",
    "excerpt",
    "body",
    "ai_summary",
    "organization",
    "target",
    "eligible_expenses",
    "required_documents",
)

# 金額帯（円）: [下限, 上限)。上限 None は上限なし
AMOUNT_BUCKETS: Dict[AmountBucket, Tuple[int, Optional[int]]] = {
    AmountBucket.UNDER_100: (0, 1000000),
    AmountBucket.FROM_100_TO_500: (1000000, 5000000),
    AmountBucket.FROM_500_TO_1000: (5000000, 10000000),
    AmountBucket.FROM_1000_TO_3000: (10000000, 30000000),
    AmountBucket.OVER_3000: (30000000, None),
}


class TaxonomyLookup(MunicipalityLookup, Protocol):
    def list_municipalities(self, prefecture_slug: Optional[str] = None) -> List[Municipality]:
        ...


class Predicate:
    def matches(self, grant: Grant) -> bool:
        raise NotImplementedError

    def describe(self) -> Dict[str, Any]:
        raise NotImplementedError


@dataclass(frozen=True)
class TextMatch(Predicate):
    """キーワードごとに、いずれかのフィールドに部分一致すること（キーワード間は AND）。"""

    keywords: Tuple[str, ...]
    fields: Tuple[str, ...] = SEARCHABLE_FIELDS

    @classmethod
    def from_query(cls, query: str, fields: Tuple[str, ...] = SEARCHABLE_FIELDS) -> "TextMatch":
        keywords = tuple(dict.fromkeys(k for k in normalize_text(query).split() if k))
        return cls(keywords=keywords, fields=fields)

    def matches(self, grant: Grant) -> bool:
        haystacks = [normalize_text(getattr(grant, f, "") or "") for f in self.fields]
        return all(any(k in h for h in haystacks) for k in self.keywords)

    def describe(self) -> Dict[str, Any]:
        return {"search": list(self.keywords), "fields": list(self.fields)}


@dataclass(frozen=True)
class TermsIn(Predicate):
    """フィールド値（単一値またはリスト）がいずれかの値を含むこと。"""

    field: str
    values: FrozenSet[str]

    def matches(self, grant: Grant) -> bool:
        value = getattr(grant, self.field)
        if value is None:
            return False
        if isinstance(value, (list, tuple, set)):
            return any(_raw(v) in self.values for v in value)
        return _raw(value) in self.values

    def describe(self) -> Dict[str, Any]:
        return {"field": self.field, "terms": sorted(self.values), "operator": "IN"}


@dataclass(frozen=True)
class NumericRange(Predicate):
    """low <= 値 < high（high が None なら上限なし）。"""

    field: str
    low: int
    high: Optional[int] = None

    def matches(self, grant: Grant) -> bool:
        value = getattr(grant, self.field)
        if value is None:
            return False
        return value >= self.low and (self.high is None or value < self.high)

    def describe(self) -> Dict[str, Any]:
        return {"field": self.field, "gte": self.low, "lt": self.high}


@dataclass(frozen=True)
class Equals(Predicate):
    field: str
    value: Any

    def matches(self, grant: Grant) -> bool:
        return getattr(grant, self.field) == self.value

    def describe(self) -> Dict[str, Any]:
        return {"field": self.field, "value": self.value, "compare": "="}


@dataclass(frozen=True)
class AnyOf(Predicate):
    children: Tuple[Predicate, ...]

    def matches(self, grant: Grant) -> bool:
        return any(child.matches(grant) for child in self.children)

    def describe(self) -> Dict[str, Any]:
        return {"relation": "OR", "clauses": [c.describe() for c in self.children]}


@dataclass(frozen=True)
class AllOf(Predicate):
    children: Tuple[Predicate, ...]

    def matches(self, grant: Grant) -> bool:
        return all(child.matches(grant) for child in self.children)

    def describe(self) -> Dict[str, Any]:
        return {"relation": "AND", "clauses": [c.describe() for c in self.children]}


def _raw(value: Any) -> Any:
    # Enum は保存値で比較する
    return getattr(value, "value", value)


def _prefecture_group(prefecture_slugs: List[str], taxonomy: TaxonomyLookup) -> Predicate:
    # 都道府県に一致、またはその都道府県に属する市町村タグを持つ助成金
    municipality_slugs = set()
    for slug in prefecture_slugs:
        municipality_slugs.update(m.slug for m in taxonomy.list_municipalities(slug))
    clauses: List[Predicate] = [TermsIn("prefecture", frozenset(prefecture_slugs))]
    if municipality_slugs:
        clauses.append(TermsIn("municipalities", frozenset(municipality_slugs)))
    return clauses[0] if len(clauses) == 1 else AnyOf(tuple(clauses))


def build_predicate(filters: SearchFilter, taxonomy: TaxonomyLookup) -> Optional[Predicate]:
    """フィルターから条件を組み立てます。条件が1つも無ければ None（全件一致）。"""
    groups: List[Predicate] = []

    if filters.text.strip():
        text = TextMatch.from_query(filters.text)
        if text.keywords:
            groups.append(text)

    if filters.category_slugs:
        groups.append(TermsIn("categories", frozenset(filters.category_slugs)))

    if filters.tag_slugs:
        groups.append(TermsIn("tags", frozenset(filters.tag_slugs)))

    if filters.prefecture_slugs:
        groups.append(_prefecture_group(filters.prefecture_slugs, taxonomy))

    if filters.region:
        members = prefectures_in_region(filters.region)
        if members:
            groups.append(_prefecture_group(members, taxonomy))

    if filters.municipality_slugs:
        scope = resolve_location(filters.municipality_slugs, taxonomy)
        clauses: List[Predicate] = [TermsIn("municipalities", frozenset(scope.municipality_slugs))]
        if scope.prefecture_slugs:
            clauses.append(TermsIn("prefecture", frozenset(scope.prefecture_slugs)))
        groups.append(clauses[0] if len(clauses) == 1 else AnyOf(tuple(clauses)))

    if filters.amount_bucket is not None:
        low, high = AMOUNT_BUCKETS[filters.amount_bucket]
        groups.append(NumericRange("max_amount_numeric", low, high))

    if filters.statuses:
        groups.append(TermsIn("application_status", frozenset(s.value for s in filters.statuses)))

    if filters.difficulties:
        groups.append(TermsIn("difficulty", frozenset(d.value for d in filters.difficulties)))

    if filters.featured_only:
        groups.append(Equals("is_featured", True))

    if not groups:
        return None
    if len(groups) == 1:
        return groups[0]
    return AllOf(tuple(groups))
