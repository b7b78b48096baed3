from grant_insight.filters import normalize_filters
from grant_insight.predicates import AMOUNT_BUCKETS, AllOf, AnyOf, TextMatch, build_predicate
from grant_insight.schemas import AmountBucket
from grant_insight.stores import InMemoryGrantStore

from conftest import make_grant


def _ids(grants, predicate):
    return sorted(g.id for g in grants.all() if predicate is None or predicate.matches(g))


def test_no_facets_builds_no_predicate(taxonomy):
    assert build_predicate(normalize_filters({}), taxonomy) is None


def test_groups_are_anded(grants, taxonomy):
    predicate = build_predicate(normalize_filters({"prefecture": "tokyo", "category": "it"}), taxonomy)
    assert isinstance(predicate, AllOf)
    assert _ids(grants, predicate) == ["g1"]


def test_values_within_a_group_are_ored(grants, taxonomy):
    predicate = build_predicate(normalize_filters({"category": "it,startup"}), taxonomy)
    assert _ids(grants, predicate) == ["g1", "g3", "g5"]


def test_text_matches_any_searchable_field(grants, taxonomy):
    assert _ids(grants, build_predicate(normalize_filters({"s": "中小企業庁"}), taxonomy)) == ["g1"]
    assert _ids(grants, build_predicate(normalize_filters({"s": "小規模事業者"}), taxonomy)) == ["g5"]


def test_text_is_width_and_case_insensitive():
    grant = make_grant("x", title="IT導入補助金")
    assert TextMatch.from_query("ＩＴ").matches(grant)
    assert TextMatch.from_query("it").matches(grant)


def test_every_keyword_must_match_somewhere(grants, taxonomy):
    assert _ids(grants, build_predicate(normalize_filters({"s": "東京都 ものづくり"}), taxonomy)) == ["g2"]
    assert _ids(grants, build_predicate(normalize_filters({"s": "東京都 創業"}), taxonomy)) == []


def test_municipality_selection_includes_prefecture_level_grants(grants, taxonomy):
    # g1 は東京都レベルの助成金で、新宿区のタグは持たない
    predicate = build_predicate(normalize_filters({"municipality": "tokyo-新宿区"}), taxonomy)
    assert isinstance(predicate, AnyOf)
    assert _ids(grants, predicate) == ["g1", "g2"]
    assert "tokyo-新宿区" not in grants.get("g1").municipalities


def test_unresolvable_municipality_contributes_no_prefecture_term(grants, taxonomy):
    predicate = build_predicate(normalize_filters({"municipality": "nowhere"}), taxonomy)
    assert _ids(grants, predicate) == []


def test_prefecture_selection_includes_city_tagged_grants(grants, taxonomy):
    grants.upsert(make_grant("c1", municipalities=["osaka-堺市"]))
    predicate = build_predicate(normalize_filters({"prefecture": "osaka"}), taxonomy)
    assert _ids(grants, predicate) == ["c1", "g3"]


def test_region_expands_to_member_prefectures(grants, taxonomy):
    assert _ids(grants, build_predicate(normalize_filters({"region": "kanto"}), taxonomy)) == ["g1", "g2"]
    assert _ids(grants, build_predicate(normalize_filters({"region": "hokkaido"}), taxonomy)) == ["g4"]


def test_amount_bucket_bounds(taxonomy):
    amounts = [0, 999999, 1000000, 4999999, 5000000, 9999999, 10000000, 29999999, 30000000, 100000000]
    samples = [make_grant(str(a), max_amount_numeric=a) for a in amounts]
    for bucket, (low, high) in AMOUNT_BUCKETS.items():
        predicate = build_predicate(normalize_filters({"amount": bucket.value}), taxonomy)
        matched = [g.max_amount_numeric for g in samples if predicate.matches(g)]
        assert matched
        assert all(low <= a and (high is None or a < high) for a in matched)
        assert len(matched) == sum(1 for a in amounts if low <= a and (high is None or a < high))


def test_amount_bucket_boundaries_belong_to_upper_bucket(taxonomy):
    grant = make_grant("x", max_amount_numeric=1000000)
    lower = build_predicate(normalize_filters({"amount": AmountBucket.UNDER_100.value}), taxonomy)
    upper = build_predicate(normalize_filters({"amount": AmountBucket.FROM_100_TO_500.value}), taxonomy)
    assert not lower.matches(grant)
    assert upper.matches(grant)


def test_status_active_selects_open_grants(grants, taxonomy):
    predicate = build_predicate(normalize_filters({"status": "active"}), taxonomy)
    assert _ids(grants, predicate) == sorted(
        g.id for g in grants.all() if g.application_status.value == "open"
    )


def test_featured_and_difficulty(grants, taxonomy):
    assert _ids(grants, build_predicate(normalize_filters({"only_featured": "1"}), taxonomy)) == ["g1"]
    assert _ids(grants, build_predicate(normalize_filters({"difficulty": "hard"}), taxonomy)) == ["g4"]


def test_describe_is_serializable(taxonomy):
    predicate = build_predicate(normalize_filters({"s": "IT", "amount": "3000+", "status": "active"}), taxonomy)
    described = predicate.describe()
    assert described["relation"] == "AND"
    assert {"field": "max_amount_numeric", "gte": 30000000, "lt": None} in described["clauses"]


def test_tags_are_their_own_group(taxonomy):
    store = InMemoryGrantStore([
        make_grant("dx", tags=["dx"], categories=["it"]),
        make_grant("gx", tags=["gx"], categories=["it"]),
        make_grant("both", tags=["dx", "gx"], categories=["startup"]),
        make_grant("none", categories=["it"]),
    ], taxonomy=taxonomy)
    assert _ids(store, build_predicate(normalize_filters({"tags": '["dx", "gx"]'}), taxonomy)) == ["both", "dx", "gx"]
    predicate = build_predicate(normalize_filters({"tags": "dx", "category": "it"}), taxonomy)
    assert isinstance(predicate, AllOf)
    assert _ids(store, predicate) == ["dx"]
