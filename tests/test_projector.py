from grant_insight import settings
from grant_insight.projector import is_deadline_soon, project_grant
from grant_insight.stores import InMemoryFavoritesStore

from conftest import make_grant, ts


def test_projects_display_fields(taxonomy):
    grant = make_grant(
        "g1", title="IT導入補助金", organization="中小企業庁", max_amount="450万円",
        deadline="2025年3月31日", categories=["it", "unknown-slug"], application_status="upcoming",
        difficulty="easy", subsidy_rate="1/2",
    )
    card = project_grant(grant, taxonomy=taxonomy)
    assert card.permalink == "{}/grants/g1/".format(settings.SITE_URL)
    assert card.amount_display == "450万円"
    assert card.deadline_display == "2025年3月31日"
    assert card.status_label == "準備中"
    assert card.difficulty_label == "易しい"
    assert card.category_names == ["IT・デジタル", "unknown-slug"]
    assert card.subsidy_rate == "1/2"
    assert card.is_favorite is False


def test_fallbacks_for_missing_values(taxonomy):
    card = project_grant(make_grant("x"), taxonomy=taxonomy)
    assert card.thumbnail_url == settings.DEFAULT_THUMBNAIL_URL
    assert card.amount_display == "未定"
    assert card.deadline_display == "随時"
    assert card.organization == "未定"
    assert card.status_label == "募集中"


def test_excerpt_is_trimmed(taxonomy):
    words = " ".join("word{}".format(i) for i in range(40))
    card = project_grant(make_grant("x", excerpt=words), taxonomy=taxonomy)
    assert card.excerpt.split(" ")[-1] == "word24…"

    card = project_grant(make_grant("y", body="補" * 300), taxonomy=taxonomy)
    assert card.excerpt == "補" * 100 + "…"


def test_favorite_flag_comes_from_the_given_user(taxonomy):
    favorites = InMemoryFavoritesStore()
    favorites.toggle("u1", "x")
    grant = make_grant("x")
    assert project_grant(grant, taxonomy=taxonomy, favorites=favorites, user_id="u1").is_favorite
    assert not project_grant(grant, taxonomy=taxonomy, favorites=favorites, user_id="u2").is_favorite
    assert not project_grant(grant, taxonomy=taxonomy, favorites=favorites).is_favorite


def test_deadline_soon():
    now = ts("2024-05-01")
    assert is_deadline_soon(ts("2024-05-20"), now)
    assert not is_deadline_soon(ts("2024-07-01"), now)
    assert not is_deadline_soon(ts("2024-04-01"), now)
    assert not is_deadline_soon(None, now)
