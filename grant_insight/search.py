"""検索の入口。初回表示と AJAX の絞り込みの両方が同じ search() を使う。"""

import logging
from typing import Optional, Tuple

from . import ordering
from .predicates import Predicate, build_predicate
from .projector import project_grant
from .schemas import SearchFilter, SearchResult
from .stores import FavoritesStore, GrantStore, StoreUnavailableError, TaxonomyStore


class SearchUnavailableError(Exception):
    """検索を実行できなかった（ストア障害）。0件とは区別して呼び出し側に伝える。"""


class GrantSearchService:
    def __init__(
        self,
        grants: GrantStore,
        taxonomy: TaxonomyStore,
        favorites: Optional[FavoritesStore] = None,
    ):
        self.grants = grants
        self.taxonomy = taxonomy
        self.favorites = favorites

    def compile(self, filters: SearchFilter) -> Optional[Predicate]:
        return build_predicate(filters, self.taxonomy)

    def search(
        self, filters: SearchFilter, user_id: Optional[str] = None, now: Optional[int] = None
    ) -> SearchResult:
        result, _ = self.search_with_predicate(filters, user_id=user_id, now=now)
        return result

    def search_with_predicate(
        self, filters: SearchFilter, user_id: Optional[str] = None, now: Optional[int] = None
    ) -> Tuple[SearchResult, Optional[Predicate]]:
        """filters は normalize_filters() の出力であること（ここでは再検証しない）。"""
        predicate = self.compile(filters)
        offset, limit = ordering.page_window(filters.page, filters.page_size)
        try:
            records, total = self.grants.find_grants(predicate, filters.sort, offset, limit)
        except StoreUnavailableError as e:
            logging.error("Grant store unavailable: %s", e)
            raise SearchUnavailableError(str(e)) from e

        items = [
            project_grant(g, taxonomy=self.taxonomy, favorites=self.favorites, user_id=user_id, now=now)
            for g in records
        ]
        result = SearchResult(
            items=items,
            total_count=total,
            total_pages=ordering.total_pages(total, limit),
            page=filters.page,
            page_size=limit,
        )
        return result, predicate
