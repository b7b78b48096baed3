from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from grant_insight import index, rate_limiter
from grant_insight.schemas import Category, Grant
from grant_insight.stores import InMemoryFavoritesStore, InMemoryGrantStore, InMemoryTaxonomyStore

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_grant(grant_id: str, days: int = 0, **overrides) -> Grant:
    data = {
        "id": grant_id,
        "title": "助成金 {}".format(grant_id),
        "created_at": BASE_TIME + timedelta(days=days),
    }
    data.update(overrides)
    return Grant(**data)


def ts(value: str) -> int:
    return int(datetime.fromisoformat(value).replace(tzinfo=timezone.utc).timestamp())


@pytest.fixture
def taxonomy():
    store = InMemoryTaxonomyStore([
        Category(name="IT・デジタル", slug="it"),
        Category(name="ものづくり", slug="manufacturing"),
        Category(name="創業", slug="startup"),
    ])
    store.seed_master_municipalities()
    return store


@pytest.fixture
def catalog():
    """東京2件・東京以外3件の固定データ。"""
    return [
        make_grant(
            "g1", days=5, title="IT導入補助金", organization="中小企業庁",
            max_amount="1200万円", max_amount_numeric=12000000, prefecture="tokyo",
            categories=["it"], is_featured=True, success_rate=60,
            deadline="2024-06-01", deadline_timestamp=ts("2024-06-01"),
        ),
        make_grant(
            "g2", days=4, title="東京都ものづくり支援", max_amount="3500万円",
            max_amount_numeric=35000000, prefecture="tokyo", municipalities=["tokyo-渋谷区"],
            categories=["manufacturing"], application_status="upcoming", success_rate=80,
        ),
        make_grant(
            "g3", days=3, title="大阪府創業支援", max_amount_numeric=12000000,
            prefecture="osaka", categories=["startup"],
        ),
        make_grant(
            "g4", days=2, title="北海道省エネ補助", max_amount_numeric=5000000,
            prefecture="hokkaido", categories=["manufacturing"], application_status="closed",
            difficulty="hard",
        ),
        make_grant(
            "g5", days=1, title="全国小規模事業者持続化補助金", max_amount_numeric=20000000,
            categories=["startup", "it"], target="小規模事業者",
        ),
    ]


@pytest.fixture
def grants(catalog, taxonomy):
    return InMemoryGrantStore(catalog, taxonomy=taxonomy)


@pytest.fixture
def favorites():
    return InMemoryFavoritesStore()


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    rate_limiter.reset()
    yield
    rate_limiter.reset()


@pytest.fixture
def client(grants, taxonomy, favorites):
    index.app.dependency_overrides[index.get_grant_store] = lambda: grants
    index.app.dependency_overrides[index.get_taxonomy] = lambda: taxonomy
    index.app.dependency_overrides[index.get_favorites] = lambda: favorites
    try:
        yield TestClient(index.app)
    finally:
        index.app.dependency_overrides.clear()
