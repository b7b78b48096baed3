import re
import json
import time
import unicodedata
from datetime import datetime, timezone
from typing import Any, List, Dict, Optional, Sequence, Union


def extract_json_from_text(t: str) -> Any:
    """モデルの出力テキストから JSON オブジェクトまたは配列を抽出して返します。

    手順:
    1) まず ```json ... ``` や ``` ... ``` といったコードフェンス内の JSON を優先して試します。
    2) それが見つからない場合、テキスト内で最初に現れる '{' または '[' から開始して
       括弧の対応を取ることで JSON の範囲を切り出します。文字列中のエスケープも考慮します。

    パースに成功すれば Python のデータ（dict または list）を返し、失敗すれば None を返します。
    """
    if not t:
        return None

    m = re.search(r"```(?:json)?\s*(.*?)\s*```", t, re.S | re.I)
    if m:
        candidate = m.group(1).strip()
        try:
            return json.loads(candidate)
        except ValueError:
            # フェンス内でも JSON でなければフォールバックする
            pass

    start = None
    for i, ch in enumerate(t):
        if ch in "{[":
            start = i
            break
    if start is None:
        return None

    stack = []
    in_str = False
    esc = False
    for i in range(start, len(t)):
        ch = t[i]
        if in_str:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
            continue
        if ch == '{':
            stack.append('}')
        elif ch == '[':
            stack.append(']')
        elif stack and ch == stack[-1]:
            stack.pop()
            if not stack:
                try:
                    return json.loads(t[start: i + 1])
                except ValueError:
                    return None
    return None


def split_list_value(value: Union[None, str, Sequence[str]]) -> List[str]:
    """リクエストのリスト値を文字列のリストに展開します。

    受け付ける形:
    - "a,b,c" のカンマ区切り
    - '["a", "b"]' の JSON 配列（AJAX クライアントが送る形式）
    - 同じキーの繰り返し（["a", "b,c"] のようなシーケンス）

    空のトークンは捨て、重複は最初の出現順で取り除きます。
    """
    if value is None:
        return []
    raw_values = [value] if isinstance(value, str) else list(value)

    tokens: List[str] = []
    for raw in raw_values:
        if raw is None:
            continue
        raw = str(raw).strip()
        if raw.startswith("["):
            try:
                decoded = json.loads(raw)
            except ValueError:
                decoded = None
            if isinstance(decoded, list):
                tokens.extend(str(v) for v in decoded if v is not None)
                continue
        tokens.extend(raw.split(","))

    seen = set()
    result: List[str] = []
    for token in tokens:
        token = token.strip()
        if token and token not in seen:
            seen.add(token)
            result.append(token)
    return result


def normalize_text(value: str) -> str:
    """全角・半角の揺れを吸収して小文字化します（検索の比較用）。"""
    return unicodedata.normalize("NFKC", value or "").casefold()


_AMOUNT_UNITS = {"億": 100000000, "万": 10000, "千": 1000, "百": 100}


def parse_amount(amount: Union[None, int, float, str]) -> int:
    """「500万円」「1億円」「3,000,000円」などの表記を円単位の整数にします。

    複数の金額が含まれる場合は最大値を採用します。読み取れなければ 0。
    """
    if amount is None or amount == "":
        return 0
    if isinstance(amount, (int, float)):
        return max(int(amount), 0)

    text = unicodedata.normalize("NFKC", amount)
    total = 0
    for number, unit in re.findall(r"([\d,]+(?:\.\d+)?)\s*([億万千百]?)", text):
        try:
            value = float(number.replace(",", ""))
        except ValueError:
            continue
        value *= _AMOUNT_UNITS.get(unit, 1)
        total = max(total, int(value))
    return total


def normalize_date(value: Union[None, int, float, str]) -> Optional[int]:
    """締切などの日付表記を epoch 秒に変換します。

    - 10桁以上の数値はそのままタイムスタンプとみなす
    - 8桁の数値は Ymd（例: 20241231）
    - それ以外は ISO 形式 (2024-12-31, 2024/12/31) を試す
    変換できなければ None を返します。
    """
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        # 数値も桁数で判定する（20241231 は Ymd）
        try:
            text = str(int(value))
        except (ValueError, OverflowError):
            return None
    else:
        text = unicodedata.normalize("NFKC", str(value)).strip()
    if text.isdigit():
        if len(text) >= 10:
            return int(text)
        if len(text) == 8:
            try:
                parsed = datetime.strptime(text, "%Y%m%d")
            except ValueError:
                return None
            return int(parsed.replace(tzinfo=timezone.utc).timestamp())
        return None

    text = text.replace("/", "-")
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        m = re.match(r"(\d{4})年(\d{1,2})月(\d{1,2})日", text)
        if not m:
            return None
        try:
            parsed = datetime(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


def trim_words(text: str, num_words: int = 25, more: str = "…") -> str:
    """抜粋を num_words 語に切り詰めます。

    空白を含まない日本語の文章は語に分割できないため、文字数 (num_words * 4) で切ります。
    """
    text = re.sub(r"\s+", " ", text or "").strip()
    if not text:
        return ""
    words = text.split(" ")
    if len(words) > 1:
        if len(words) <= num_words:
            return text
        return " ".join(words[:num_words]) + more
    limit = num_words * 4
    if len(text) <= limit:
        return text
    return text[:limit] + more


def now_ts() -> int:
    return int(time.time())


def _first(raw: Dict, *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def _parse_rate(value: Any) -> Optional[int]:
    """「60」「60%」「６０％」などを 0〜100 の整数にします。読み取れなければ None。"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            rate = int(value)
        except (ValueError, OverflowError):
            return None
    else:
        m = re.search(r"\d+", unicodedata.normalize("NFKC", str(value)))
        if not m:
            return None
        rate = int(m.group(0))
    return rate if 0 <= rate <= 100 else None


def normalize_grant_record(raw: Dict) -> Dict:
    """データファイルの1件を Grant の形に正規化します。

    主な処理:
    - キー名の揺れ（snake_case / camelCase / 旧フィールド名）を吸収
    - max_amount_numeric が無ければ表示用の金額から円単位の値を推定
    - deadline_timestamp が無ければ締切の表記から推定
    - 画面側のステータス値 active を保存値 open に読み替え
    - is_featured の "1" / "true" などを真偽値に変換
    """
    amount_display = _first(raw, "max_amount", "maxAmount", "amount") or ""
    amount_numeric = _first(raw, "max_amount_numeric", "maxAmountNumeric")
    deadline = _first(raw, "deadline", "application_deadline") or ""
    deadline_ts = _first(raw, "deadline_timestamp", "deadlineTimestamp")

    status = str(_first(raw, "application_status", "applicationStatus", "status") or "open")
    if status == "active":
        status = "open"

    featured = _first(raw, "is_featured", "isFeatured", "featured")
    if isinstance(featured, str):
        featured = featured.strip().lower() in ("1", "true", "yes", "on")

    success_rate = _parse_rate(_first(raw, "success_rate", "successRate", "grant_success_rate"))
    grant_id = _first(raw, "id", "ID", "post_id")
    if grant_id is None:
        raise ValueError("grant record has no id")

    categories = _first(raw, "categories", "grant_category")
    municipalities = _first(raw, "municipalities", "grant_municipality")
    prefecture = _first(raw, "prefecture", "grant_prefecture")
    if isinstance(prefecture, list):
        # 都道府県は1件まで（先頭を採用）
        prefecture = prefecture[0] if prefecture else None

    return {
        "id": str(grant_id),
        "title": raw.get("title") or raw.get("name") or "",
        "excerpt": raw.get("excerpt") or "",
        "body": _first(raw, "body", "content", "grant_content") or "",
        "organization": raw.get("organization") or "",
        "target": _first(raw, "target", "grant_target") or "",
        "eligible_expenses": _first(raw, "eligible_expenses", "eligibleExpenses") or "",
        "required_documents": _first(raw, "required_documents", "requiredDocuments") or "",
        "ai_summary": _first(raw, "ai_summary", "aiSummary") or "",
        "max_amount": str(amount_display),
        "max_amount_numeric": parse_amount(amount_numeric if amount_numeric is not None else amount_display),
        "subsidy_rate": str(_first(raw, "subsidy_rate", "subsidyRate") or ""),
        "deadline": str(deadline),
        "deadline_timestamp": normalize_date(deadline_ts if deadline_ts is not None else deadline),
        "application_status": status,
        "difficulty": _first(raw, "difficulty", "grant_difficulty") or "normal",
        "success_rate": success_rate,
        "is_featured": bool(featured),
        "categories": split_list_value(categories),
        "tags": split_list_value(_first(raw, "tags", "grant_tag")),
        "prefecture": prefecture,
        "municipalities": split_list_value(municipalities),
        "thumbnail_url": _first(raw, "thumbnail_url", "thumbnailUrl", "image_url"),
        "created_at": _first(raw, "created_at", "createdAt", "date") or datetime.now(timezone.utc),
        "published": raw.get("published", raw.get("post_status", "publish") == "publish"),
    }
