"""助成金・タクソノミー・お気に入りのストア。

検索側はストアを読むだけ。書き込みはデータ読み込み時の都道府県→市町村同期、
市町村の遅延作成、お気に入りの切り替えに限られる。
"""

import json
import logging
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Tuple, Union

from pydantic import ValidationError

from . import ordering
from .geography import (
    MUNICIPALITY_MASTER,
    PREFECTURE_LEVEL_SUFFIX,
    PREFECTURES,
    get_prefecture,
    municipality_slug,
    prefecture_level_slug,
)
from .predicates import Predicate
from .schemas import Category, Grant, Municipality, Prefecture, SortKey
from .utils import normalize_grant_record


class StoreUnavailableError(Exception):
    """ストアが読めない・壊れている（「0件」とは区別する）。"""


class GrantStore(Protocol):
    def find_grants(
        self, predicate: Optional[Predicate], sort: SortKey, offset: int, limit: int
    ) -> Tuple[List[Grant], int]:
        ...


class TaxonomyStore(Protocol):
    def list_categories(self) -> List[Category]:
        ...

    def list_prefectures(self) -> List[Prefecture]:
        ...

    def list_municipalities(self, prefecture_slug: Optional[str] = None) -> List[Municipality]:
        ...

    def get_municipality(self, slug: str) -> Optional[Municipality]:
        ...

    def get_category(self, slug: str) -> Optional[Category]:
        ...


class FavoritesStore(Protocol):
    def is_favorite(self, user_id: str, grant_id: str) -> bool:
        ...


# ========= タクソノミー =========

class InMemoryTaxonomyStore:
    """カテゴリー・都道府県・市町村のマスター。

    都道府県レベルの市町村は生成時に47件すべて作成する。市区町村は
    seed_master_municipalities() で一括、または ensure_master_municipalities() で
    都道府県ごとに遅延作成する。どちらも何度呼んでも重複しない。
    """

    def __init__(self, categories: Iterable[Category] = ()):
        self._lock = threading.Lock()
        self._categories: Dict[str, Category] = {c.slug: c for c in categories}
        self._municipalities: Dict[str, Municipality] = {}
        for prefecture in PREFECTURES:
            self.ensure_municipality(prefecture.name, prefecture.slug, prefecture_level=True)

    def ensure_municipality(self, name: str, prefecture_slug: Optional[str], prefecture_level: bool = False) -> Municipality:
        if prefecture_level:
            slug = prefecture_level_slug(prefecture_slug)
        else:
            slug = municipality_slug(prefecture_slug, name) if prefecture_slug else name
        with self._lock:
            existing = self._municipalities.get(slug)
            if existing is not None:
                return existing
            municipality = Municipality(
                name=name,
                slug=slug,
                prefecture_slug=prefecture_slug,
                is_prefecture_level=prefecture_level,
            )
            self._municipalities[slug] = municipality
            logging.debug("Created municipality %s (%s)", slug, name)
            return municipality

    def add_municipality(self, municipality: Municipality) -> Municipality:
        with self._lock:
            return self._municipalities.setdefault(municipality.slug, municipality)

    def ensure_master_municipalities(self, prefecture_slug: str) -> List[Municipality]:
        """都道府県の市区町村をマスターから作成し、その都道府県の一覧を返します。"""
        for name in MUNICIPALITY_MASTER.get(prefecture_slug, ()):
            self.ensure_municipality(name, prefecture_slug)
        return self.list_municipalities(prefecture_slug)

    def seed_master_municipalities(self) -> None:
        for prefecture in PREFECTURES:
            self.ensure_master_municipalities(prefecture.slug)

    def add_category(self, category: Category) -> Category:
        with self._lock:
            return self._categories.setdefault(category.slug, category)

    def list_categories(self) -> List[Category]:
        return list(self._categories.values())

    def list_prefectures(self) -> List[Prefecture]:
        return list(PREFECTURES)

    def list_municipalities(self, prefecture_slug: Optional[str] = None) -> List[Municipality]:
        municipalities = list(self._municipalities.values())
        if prefecture_slug is None:
            return municipalities
        return [m for m in municipalities if m.prefecture_slug == prefecture_slug]

    def get_municipality(self, slug: str) -> Optional[Municipality]:
        return self._municipalities.get(slug)

    def get_category(self, slug: str) -> Optional[Category]:
        return self._categories.get(slug)

    def update_counts(self, grants: Iterable[Grant]) -> None:
        """公開中の助成金からカテゴリー・市町村の件数を数え直します。"""
        category_counts: Dict[str, int] = {}
        municipality_counts: Dict[str, int] = {}
        for grant in grants:
            if not grant.published:
                continue
            for slug in set(grant.categories):
                category_counts[slug] = category_counts.get(slug, 0) + 1
            for slug in set(grant.municipalities):
                municipality_counts[slug] = municipality_counts.get(slug, 0) + 1
        with self._lock:
            for slug, category in self._categories.items():
                self._categories[slug] = category.model_copy(update={"count": category_counts.get(slug, 0)})
            for slug, municipality in self._municipalities.items():
                self._municipalities[slug] = municipality.model_copy(update={"count": municipality_counts.get(slug, 0)})

    def is_prefecture_level(self, slug: str) -> bool:
        municipality = self._municipalities.get(slug)
        if municipality is not None:
            return municipality.is_prefecture_level
        return slug.endswith(PREFECTURE_LEVEL_SUFFIX)


def sync_prefecture_municipality(grant: Grant, taxonomy: InMemoryTaxonomyStore) -> Grant:
    """助成金の都道府県に合わせて、都道府県レベルの市町村タグを付け直します。

    「東京都」の助成金は都道府県 tokyo と市町村 tokyo-prefecture-level の両方を持つ。
    他の都道府県レベルのタグは外す。何度実行しても結果は同じ。
    """
    expected = None
    prefecture = get_prefecture(grant.prefecture) if grant.prefecture else None
    if prefecture is not None:
        expected = taxonomy.ensure_municipality(prefecture.name, prefecture.slug, prefecture_level=True).slug

    municipalities: List[str] = []
    for slug in grant.municipalities:
        if slug in municipalities:
            continue
        if slug != expected and taxonomy.is_prefecture_level(slug):
            continue
        municipalities.append(slug)
    if expected is not None and expected not in municipalities:
        municipalities.append(expected)

    if municipalities == grant.municipalities:
        return grant
    return grant.model_copy(update={"municipalities": municipalities})


# ========= 助成金 =========

class InMemoryGrantStore:
    def __init__(self, grants: Iterable[Grant] = (), taxonomy: Optional[InMemoryTaxonomyStore] = None):
        self._taxonomy = taxonomy
        self._grants: Dict[str, Grant] = {}
        for grant in grants:
            self.upsert(grant)

    def upsert(self, grant: Grant) -> Grant:
        if self._taxonomy is not None:
            grant = sync_prefecture_municipality(grant, self._taxonomy)
        self._grants[grant.id] = grant
        return grant

    def get(self, grant_id: str) -> Optional[Grant]:
        return self._grants.get(grant_id)

    def all(self) -> List[Grant]:
        return list(self._grants.values())

    def find_grants(
        self, predicate: Optional[Predicate], sort: SortKey, offset: int, limit: int
    ) -> Tuple[List[Grant], int]:
        matched = [
            g for g in self._grants.values()
            if g.published and (predicate is None or predicate.matches(g))
        ]
        ordered = ordering.sort_grants(matched, sort)
        return ordered[offset: offset + limit], len(ordered)


# ========= お気に入り =========

class InMemoryFavoritesStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._favorites: Dict[str, List[str]] = {}

    def is_favorite(self, user_id: str, grant_id: str) -> bool:
        return grant_id in self._favorites.get(user_id, ())

    def favorites(self, user_id: str) -> List[str]:
        return list(self._favorites.get(user_id, ()))

    def toggle(self, user_id: str, grant_id: str) -> Tuple[bool, int]:
        """お気に入りを切り替え、(切り替え後にお気に入りか, 件数) を返します。"""
        with self._lock:
            favorites = self._favorites.setdefault(user_id, [])
            if grant_id in favorites:
                favorites.remove(grant_id)
                return False, len(favorites)
            favorites.append(grant_id)
            return True, len(favorites)


# ========= データ読み込み =========

def load_catalog(
    path: Union[str, Path], taxonomy: Optional[InMemoryTaxonomyStore] = None
) -> Tuple[InMemoryGrantStore, InMemoryTaxonomyStore]:
    """JSON データファイルからストアを作ります。

    形式は {"categories": [...], "municipalities": [...], "grants": [...]} または
    助成金の配列そのもの。ファイルが読めない・JSON でない場合は StoreUnavailableError。
    個々の助成金が不正な場合はログに残して読み飛ばす。
    """
    try:
        with open(path, encoding="utf-8") as fh:
            document = json.load(fh)
    except (OSError, ValueError) as e:
        logging.error("Failed to load grant data from %s: %s", path, e)
        raise StoreUnavailableError("助成金データを読み込めませんでした: {}".format(path)) from e

    if isinstance(document, list):
        document = {"grants": document}
    if not isinstance(document, dict) or not isinstance(document.get("grants", []), list):
        raise StoreUnavailableError("助成金データの形式が不正です: {}".format(path))

    taxonomy = taxonomy or InMemoryTaxonomyStore()
    taxonomy.seed_master_municipalities()
    for raw in document.get("categories", []):
        try:
            taxonomy.add_category(Category.model_validate(raw))
        except ValidationError as e:
            logging.warning("Skipping invalid category %r: %s", raw, e)
    for raw in document.get("municipalities", []):
        try:
            taxonomy.add_municipality(Municipality.model_validate(raw))
        except ValidationError as e:
            logging.warning("Skipping invalid municipality %r: %s", raw, e)

    store = InMemoryGrantStore(taxonomy=taxonomy)
    for raw in document.get("grants", []):
        if not isinstance(raw, dict):
            logging.warning("Skipping non-object grant entry: %r", raw)
            continue
        try:
            store.upsert(Grant.model_validate(normalize_grant_record(raw)))
        except (ValidationError, ValueError, TypeError) as e:
            logging.warning("Skipping invalid grant %r: %s", raw.get("id"), e)

    taxonomy.update_counts(store.all())
    logging.info("Loaded %d grants from %s", len(store.all()), path)
    return store, taxonomy
