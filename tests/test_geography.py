from grant_insight import geography
from grant_insight.schemas import Municipality


def test_prefectures_are_in_canonical_order():
    slugs = [p.slug for p in geography.PREFECTURES]
    assert len(slugs) == 47
    assert slugs[0] == "hokkaido"
    assert slugs[-1] == "okinawa"
    assert slugs.index("tokyo") < slugs.index("osaka")


def test_every_prefecture_belongs_to_a_known_region():
    regions = {slug for slug, _ in geography.REGIONS}
    assert len(regions) == 8
    assert all(p.region in regions for p in geography.PREFECTURES)


def test_prefectures_in_region():
    assert geography.prefectures_in_region("kanto") == [
        "ibaraki", "tochigi", "gunma", "saitama", "chiba", "tokyo", "kanagawa",
    ]
    assert geography.prefectures_in_region("kyushu-okinawa")[-1] == "okinawa"
    assert geography.prefectures_in_region("atlantis") == []


def test_infer_prefecture_from_name_prefix():
    assert geography.infer_prefecture("東京都渋谷区") == "tokyo"
    assert geography.infer_prefecture("北海道札幌市") == "hokkaido"
    assert geography.infer_prefecture("渋谷区") is None
    assert geography.infer_prefecture("") is None


def test_resolve_location_uses_explicit_parent(taxonomy):
    scope = geography.resolve_location(["tokyo-渋谷区", "osaka-堺市"], taxonomy)
    assert scope.municipality_slugs == ["tokyo-渋谷区", "osaka-堺市"]
    assert scope.prefecture_slugs == ["tokyo", "osaka"]
    assert scope.unresolved == []


def test_resolve_location_falls_back_to_name_prefix(taxonomy):
    taxonomy.add_municipality(Municipality(name="東京都調布市", slug="legacy-chofu"))
    scope = geography.resolve_location(["legacy-chofu"], taxonomy)
    assert scope.prefecture_slugs == ["tokyo"]


def test_resolve_location_keeps_unresolved_slugs(taxonomy):
    scope = geography.resolve_location(["nowhere", "tokyo-港区", "tokyo-新宿区"], taxonomy)
    assert scope.municipality_slugs == ["nowhere", "tokyo-港区", "tokyo-新宿区"]
    assert scope.prefecture_slugs == ["tokyo"]
    assert scope.unresolved == ["nowhere"]
