import os

# ========= OpenAI設定 =========
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4.1-mini")

# ========= データ・表示 =========
# 助成金データ(JSON)のパス。未設定なら空のストアで起動する
DATA_PATH = os.getenv("GI_DATA_PATH")
SITE_URL = os.getenv("GI_SITE_URL", "http://localhost:8000").rstrip("/")
DEFAULT_THUMBNAIL_URL = os.getenv("GI_DEFAULT_THUMBNAIL", "/assets/images/grant-default.jpg")

# ========= リクエスト検証 =========
# 設定されている場合、POST は nonce フィールドに同じ値を持つ必要がある
REQUEST_TOKEN = os.getenv("GI_REQUEST_TOKEN")
RATE_LIMIT_PER_MIN = int(os.getenv("RATE_LIMIT_PER_MIN", "60"))

DEBUG = os.getenv("GI_DEBUG", "").lower() in ("1", "true", "yes", "on")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
