from typing import Optional

from . import settings
from .schemas import ApplicationStatus, Difficulty, Grant, GrantCard
from .stores import FavoritesStore, TaxonomyStore
from .utils import now_ts, trim_words

STATUS_LABELS = {
    ApplicationStatus.OPEN: "募集中",
    ApplicationStatus.UPCOMING: "準備中",
    ApplicationStatus.CLOSED: "終了",
}

DIFFICULTY_LABELS = {
    Difficulty.EASY: "易しい",
    Difficulty.NORMAL: "普通",
    Difficulty.HARD: "難しい",
}

EXCERPT_WORDS = 25
DEADLINE_SOON_SECONDS = 30 * 24 * 60 * 60


def permalink(grant_id: str) -> str:
    return "{}/grants/{}/".format(settings.SITE_URL, grant_id)


def is_deadline_soon(deadline_timestamp: Optional[int], now: Optional[int] = None) -> bool:
    """締切が30日以内に迫っているか（過ぎたものは含まない）。"""
    if not deadline_timestamp:
        return False
    now = now_ts() if now is None else now
    return now < deadline_timestamp <= now + DEADLINE_SOON_SECONDS


def project_grant(
    grant: Grant,
    *,
    taxonomy: TaxonomyStore,
    favorites: Optional[FavoritesStore] = None,
    user_id: Optional[str] = None,
    now: Optional[int] = None,
) -> GrantCard:
    """助成金を一覧カード用の表示データに変換します。

    お気に入り判定に使うユーザーとストアは引数で受け取ります（グローバル状態は使わない）。
    """
    category_names = []
    for slug in grant.categories:
        category = taxonomy.get_category(slug)
        category_names.append(category.name if category else slug)

    is_favorite = bool(user_id and favorites is not None and favorites.is_favorite(user_id, grant.id))

    return GrantCard(
        id=grant.id,
        title=grant.title,
        permalink=permalink(grant.id),
        excerpt=trim_words(grant.excerpt or grant.body, EXCERPT_WORDS),
        thumbnail_url=grant.thumbnail_url or settings.DEFAULT_THUMBNAIL_URL,
        amount_display=grant.max_amount or "未定",
        deadline_display=grant.deadline or "随時",
        organization=grant.organization or "未定",
        subsidy_rate=grant.subsidy_rate,
        status=grant.application_status,
        status_label=STATUS_LABELS[grant.application_status],
        difficulty_label=DIFFICULTY_LABELS[grant.difficulty],
        success_rate=grant.success_rate,
        is_featured=grant.is_featured,
        deadline_soon=is_deadline_soon(grant.deadline_timestamp, now),
        category_names=category_names,
        is_favorite=is_favorite,
    )
