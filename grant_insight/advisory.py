"""検索結果に添える参考情報（ヒューリスティック）。

ここでの関連度や要約は表示用の目安で、絞り込み・並び順には一切使わない。
"""

import asyncio
import json
import logging
import re
import traceback
from typing import List, Sequence, Tuple

from openai import OpenAI

from . import settings, utils
from .schemas import Grant, GrantCard

# 関連語による検索候補
RELATED_TERMS = {
    "AI": ("DX", "自動化", "デジタル化"),
    "スタートアップ": ("創業", "ベンチャー", "起業"),
    "製造業": ("ものづくり", "工場", "技術開発"),
}

HIGH_AMOUNT_YEN = 10000000


def extract_keywords(query: str) -> List[str]:
    """空白と句読点で区切り、2文字以上の語だけを返します。"""
    words = re.split(r"[\s、。，．,.!?！？「」『』()（）・/]+", query or "")
    return [w for w in dict.fromkeys(words) if len(w) >= 2]


def relevance_score(query: str, grant: Grant) -> float:
    """キーワードのうち本文かタイトルに含まれる割合。キーワードが無ければ 0.5。"""
    keywords = extract_keywords(query)
    if not keywords:
        return 0.5
    content = utils.normalize_text(" ".join((grant.title, grant.body, grant.excerpt)))
    hits = sum(1 for k in keywords if utils.normalize_text(k) in content)
    return round(hits / len(keywords), 3)


def query_complexity(query: str) -> str:
    count = len(extract_keywords(query))
    if count <= 2:
        return "simple"
    if count <= 5:
        return "medium"
    return "complex"


def search_suggestions(query: str, cards: Sequence[GrantCard], limit: int = 5) -> List[str]:
    """上位結果のカテゴリーと関連語から、次の検索語の候補を作ります。"""
    suggestions: List[str] = []
    categories: List[str] = []
    for card in cards[:3]:
        categories.extend(card.category_names)
    for category in list(dict.fromkeys(categories))[:3]:
        suggestions.append("{} {}".format(query, category).strip())

    for term, related in RELATED_TERMS.items():
        if term.lower() in (query or "").lower():
            suggestions.extend(re.sub(re.escape(term), r, query, flags=re.I) for r in related)
            break

    return list(dict.fromkeys(suggestions))[:limit]


def fallback_summary(query: str, cards: Sequence[GrantCard], total: int) -> str:
    if total == 0:
        return (
            "「{}」に該当する助成金が見つかりませんでした。\n\n"
            "検索のヒント：\n"
            "・より一般的なキーワードで検索してみてください\n"
            "・業種名や技術分野を変更してみてください\n"
            "・絞り込み条件をリセットしてみてください"
        ).format(query)

    lines = ["「{}」で{}件の助成金が見つかりました。".format(query, total)]
    featured = sum(1 for c in cards if c.is_featured)
    high_amount = sum(1 for c in cards if utils.parse_amount(c.amount_display) >= HIGH_AMOUNT_YEN)
    if featured:
        lines.append("\nこのうち{}件は特におすすめの助成金です。".format(featured))
    if high_amount:
        lines.append("{}件は1000万円以上の大型助成金です。".format(high_amount))
    lines.append("\n詳細については各助成金の「詳細を見る」ボタンからご確認ください。")
    return "\n".join(lines)


def build_prompt(query: str, cards: Sequence[GrantCard], total: int) -> str:
    top = [
        {
            "title": c.title,
            "organization": c.organization,
            "amount": c.amount_display,
            "deadline": c.deadline_display,
            "status": c.status_label,
        }
        for c in cards[:3]
    ]
    return f"""
あなたは日本の助成金・補助金の案内係です。
検索キーワードと検索結果の上位案件をもとに、利用者向けの短い案内文（200字以内）と、
次に試すとよい検索キーワードを最大3件返してください。案件の情報を憶測で補わないこと。

検索キーワード: {query}
結果件数: {total}件
上位案件: {json.dumps(top, ensure_ascii=False)}

返却は必ず厳密なJSONで、次の形式に従ってください:
{{"summary": "案内文", "suggestions": ["キーワード1", "キーワード2"]}}
""".strip()


def _create_response(prompt: str):
    client = OpenAI(api_key=settings.OPENAI_API_KEY)
    return client.responses.create(
        model=settings.OPENAI_MODEL,
        input=prompt,
        max_output_tokens=600,
    )


async def generate_summary(query: str, cards: Sequence[GrantCard], total: int) -> Tuple[str, List[str]]:
    """(案内文, 検索候補) を返します。

    OPENAI_API_KEY があれば OpenAI に案内文を作らせ、未設定・失敗・不正な出力の場合は
    テンプレートの案内文にフォールバックします。
    """
    fallback = (fallback_summary(query, cards, total), search_suggestions(query, cards))
    if not settings.OPENAI_API_KEY:
        return fallback

    try:
        resp = await asyncio.to_thread(_create_response, build_prompt(query, cards, total))
    except Exception as e:
        logging.error("OpenAI call failed: %s\n%s", e, traceback.format_exc())
        return fallback

    text = getattr(resp, "output_text", None)
    if not text:
        logging.error("No output text from OpenAI response: %r", resp)
        return fallback

    try:
        parsed = json.loads(text)
    except ValueError:
        parsed = utils.extract_json_from_text(text)

    if not isinstance(parsed, dict) or not isinstance(parsed.get("summary"), str):
        logging.warning("Model did not return a summary object. Snippet: %s", text[:500])
        return fallback

    suggestions = [s for s in parsed.get("suggestions") or [] if isinstance(s, str)]
    return parsed["summary"], suggestions[:5] or fallback[1]
