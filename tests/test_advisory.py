import asyncio
from types import SimpleNamespace

from grant_insight import advisory, settings
from grant_insight.projector import project_grant

from conftest import make_grant


def _cards(taxonomy, grants):
    return [project_grant(g, taxonomy=taxonomy) for g in grants]


def test_extract_keywords_and_complexity():
    assert advisory.extract_keywords("IT 導入、補助 x") == ["IT", "導入", "補助"]
    assert advisory.query_complexity("") == "simple"
    assert advisory.query_complexity("IT 導入 補助") == "medium"
    assert advisory.query_complexity("aa bb cc dd ee ff") == "complex"


def test_relevance_score():
    grant = make_grant("x", title="IT導入補助金", body="中小企業のデジタル化を支援")
    assert advisory.relevance_score("", grant) == 0.5
    assert advisory.relevance_score("ＩＴ導入", grant) == 1.0
    assert advisory.relevance_score("IT 農業", grant) == 0.5
    assert advisory.relevance_score("農業 漁業 林業", grant) == 0.0


def test_search_suggestions(taxonomy, catalog):
    cards = _cards(taxonomy, catalog[:1])
    suggestions = advisory.search_suggestions("AI", cards)
    assert suggestions[0] == "AI IT・デジタル"
    assert "DX" in suggestions
    assert len(suggestions) <= 5


def test_fallback_summary(taxonomy, catalog):
    assert "見つかりませんでした" in advisory.fallback_summary("農業", [], 0)
    summary = advisory.fallback_summary("補助金", _cards(taxonomy, catalog[:2]), 2)
    assert summary.startswith("「補助金」で2件の助成金が見つかりました。")
    assert "1件は特におすすめ" in summary
    assert "2件は1000万円以上" in summary


def test_generate_summary_without_key_uses_template(monkeypatch, taxonomy, catalog):
    monkeypatch.setattr(settings, "OPENAI_API_KEY", None)
    cards = _cards(taxonomy, catalog[:1])
    summary, suggestions = asyncio.run(advisory.generate_summary("IT", cards, 1))
    assert summary == advisory.fallback_summary("IT", cards, 1)
    assert suggestions == advisory.search_suggestions("IT", cards)


def test_generate_summary_parses_model_output(monkeypatch, taxonomy, catalog):
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
    output = '```json\n{"summary": "IT導入補助金がおすすめです。", "suggestions": ["DX", 3]}\n```'
    monkeypatch.setattr(advisory, "_create_response", lambda prompt: SimpleNamespace(output_text=output))
    summary, suggestions = asyncio.run(advisory.generate_summary("IT", _cards(taxonomy, catalog[:1]), 1))
    assert summary == "IT導入補助金がおすすめです。"
    assert suggestions == ["DX"]


def test_generate_summary_falls_back_on_error(monkeypatch, taxonomy, catalog):
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")

    def boom(prompt):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(advisory, "_create_response", boom)
    cards = _cards(taxonomy, catalog[:1])
    summary, _ = asyncio.run(advisory.generate_summary("IT", cards, 1))
    assert summary == advisory.fallback_summary("IT", cards, 1)


def test_generate_summary_falls_back_on_invalid_output(monkeypatch, taxonomy, catalog):
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(advisory, "_create_response", lambda prompt: SimpleNamespace(output_text="すみません"))
    summary, _ = asyncio.run(advisory.generate_summary("IT", [], 0))
    assert summary == advisory.fallback_summary("IT", [], 0)


def test_related_terms_are_replaced_regardless_of_case():
    suggestions = advisory.search_suggestions("ai 補助金", [])
    assert suggestions == ["DX 補助金", "自動化 補助金", "デジタル化 補助金"]
