from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from typing import Dict, List, Optional, Tuple
import hmac
import logging
import time

from . import advisory, geography, rate_limiter, settings
from .filters import normalize_filters
from .predicates import TextMatch
from .schemas import (
    AdvisoryCard,
    AiSearchData,
    AiSearchResponse,
    ErrorResponse,
    FavoriteResponse,
    FavoriteToggle,
    MunicipalityData,
    MunicipalityResponse,
    Pagination,
    QueryInfo,
    RegionGroup,
    SearchData,
    SearchFilter,
    SearchResponse,
    SearchStats,
    SortKey,
    Suggestion,
    SuggestionData,
    SuggestionResponse,
    TaxonomyData,
    TaxonomyResponse,
)
from .search import GrantSearchService, SearchUnavailableError
from .stores import (
    InMemoryFavoritesStore,
    InMemoryGrantStore,
    InMemoryTaxonomyStore,
    StoreUnavailableError,
    load_catalog,
)
from .utils import split_list_value

logging.basicConfig(level=settings.LOG_LEVEL)

app = FastAPI(title="Grant Insight Search API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

if not settings.OPENAI_API_KEY:
    logging.warning("OPENAI_API_KEY is not set. AI summaries will use the template fallback.")

SECURITY_ERROR = "セキュリティチェックに失敗しました"
SEARCH_ERROR = "検索中にエラーが発生しました。しばらく後でお試しください。"

Params = Dict[str, List[str]]

# ========= ストア =========
_catalog: Optional[Tuple[InMemoryGrantStore, InMemoryTaxonomyStore]] = None
_favorites = InMemoryFavoritesStore()


def _load_catalog() -> Tuple[InMemoryGrantStore, InMemoryTaxonomyStore]:
    global _catalog
    if _catalog is None:
        if settings.DATA_PATH:
            _catalog = load_catalog(settings.DATA_PATH)
        else:
            logging.warning("GI_DATA_PATH is not set. Serving an empty grant catalog.")
            taxonomy = InMemoryTaxonomyStore()
            taxonomy.seed_master_municipalities()
            _catalog = (InMemoryGrantStore(taxonomy=taxonomy), taxonomy)
    return _catalog


def get_grant_store() -> InMemoryGrantStore:
    try:
        return _load_catalog()[0]
    except StoreUnavailableError:
        raise HTTPException(status_code=503, detail=SEARCH_ERROR)


def get_taxonomy() -> InMemoryTaxonomyStore:
    try:
        return _load_catalog()[1]
    except StoreUnavailableError:
        raise HTTPException(status_code=503, detail=SEARCH_ERROR)


def get_favorites() -> InMemoryFavoritesStore:
    return _favorites


def get_search_service(
    grants: InMemoryGrantStore = Depends(get_grant_store),
    taxonomy: InMemoryTaxonomyStore = Depends(get_taxonomy),
    favorites: InMemoryFavoritesStore = Depends(get_favorites),
) -> GrantSearchService:
    return GrantSearchService(grants, taxonomy, favorites)


# ========= 共通処理 =========
@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(message=str(exc.detail)).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    logging.info("Rejected invalid request to %s: %s", request.url.path, exc.errors())
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(message="リクエストの形式が不正です").model_dump(),
    )


@app.exception_handler(Exception)
async def unexpected_error(request: Request, exc: Exception):
    logging.exception("Unhandled error on %s", request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(message=SEARCH_ERROR).model_dump(),
    )


def enforce_rate_limit(request: Request) -> None:
    key = request.client.host if request.client else "unknown"
    allowed, _ = rate_limiter.allow_request(key)
    if not allowed:
        raise HTTPException(status_code=429, detail="リクエストが多すぎます。しばらく待ってから再度お試しください。")


def _query_params(request: Request) -> Params:
    params: Params = {}
    for key, value in request.query_params.multi_items():
        params.setdefault(key, []).append(value)
    return params


async def _form_params(request: Request) -> Params:
    form = await request.form()
    params: Params = {}
    for key, value in form.multi_items():
        if isinstance(value, str):
            params.setdefault(key, []).append(value)
    return params


def _last(params: Params, key: str, default: str = "") -> str:
    values = params.get(key)
    return values[-1].strip() if values else default


def verify_nonce(params: Params) -> None:
    """GI_REQUEST_TOKEN が設定されていれば、フォームの nonce と一致することを確認する。"""
    if not settings.REQUEST_TOKEN:
        return
    if not hmac.compare_digest(_last(params, "nonce"), settings.REQUEST_TOKEN):
        logging.info("Rejected request with invalid nonce")
        raise HTTPException(status_code=403, detail=SECURITY_ERROR)


def _run_search(service: GrantSearchService, filters: SearchFilter, user_id: Optional[str]) -> SearchResponse:
    try:
        result, predicate = service.search_with_predicate(filters, user_id=user_id)
    except SearchUnavailableError:
        raise HTTPException(status_code=503, detail=SEARCH_ERROR)

    showing_from = (result.page - 1) * result.page_size + 1 if result.items else 0
    stats = SearchStats(
        total_found=result.total_count,
        current_page=result.page,
        total_pages=result.total_pages,
        posts_per_page=result.page_size,
        showing_from=showing_from,
        showing_to=min(result.page * result.page_size, result.total_count),
    )
    return SearchResponse(
        data=SearchData(
            grants=result.items,
            stats=stats,
            pagination=Pagination(
                current_page=result.page,
                total_pages=result.total_pages,
                total_posts=result.total_count,
                posts_per_page=result.page_size,
            ),
            query_info=QueryInfo(
                search=filters.text,
                filters_applied=filters.has_facets(),
                sort=filters.sort,
            ),
            debug={"predicate": predicate.describe() if predicate else None} if settings.DEBUG else None,
        )
    )


# ========= ルート =========
@app.get("/healthz")
async def health():
    return {"ok": True}


@app.get("/v1/grants", response_model=SearchResponse, dependencies=[Depends(enforce_rate_limit)])
def list_grants(
    request: Request,
    service: GrantSearchService = Depends(get_search_service),
    x_user_id: Optional[str] = Header(None),
):
    """初回表示用。クエリ文字列で条件を受け取る。"""
    return _run_search(service, normalize_filters(_query_params(request)), x_user_id)


@app.post("/v1/grants", response_model=SearchResponse, dependencies=[Depends(enforce_rate_limit)])
async def refine_grants(
    request: Request,
    service: GrantSearchService = Depends(get_search_service),
    x_user_id: Optional[str] = Header(None),
):
    """絞り込み用。フォーム (application/x-www-form-urlencoded) で条件を受け取る。"""
    params = await _form_params(request)
    verify_nonce(params)
    return _run_search(service, normalize_filters(params), x_user_id)


@app.get("/v1/taxonomies", response_model=TaxonomyResponse)
def list_taxonomies(taxonomy: InMemoryTaxonomyStore = Depends(get_taxonomy)):
    prefectures = taxonomy.list_prefectures()
    regions = [
        RegionGroup(slug=slug, name=name, prefectures=[p for p in prefectures if p.region == slug])
        for slug, name in geography.REGIONS
    ]
    return TaxonomyResponse(data=TaxonomyData(categories=taxonomy.list_categories(), regions=regions))


@app.post("/v1/municipalities", response_model=MunicipalityResponse)
async def municipalities_for_prefectures(
    request: Request,
    taxonomy: InMemoryTaxonomyStore = Depends(get_taxonomy),
):
    """選択された都道府県の市町村一覧。未作成の市町村はマスターから作成する。"""
    params = await _form_params(request)
    verify_nonce(params)
    slugs = params.get("prefecture_slugs") or params.get("prefectures") or []

    data = {}
    for slug in split_list_value(slugs):
        if geography.get_prefecture(slug) is None:
            continue
        data[slug] = taxonomy.ensure_master_municipalities(slug)

    total = sum(len(v) for v in data.values())
    return MunicipalityResponse(
        data=MunicipalityData(
            data=data,
            prefecture_count=len(data),
            municipality_count=total,
            message="{}件の市町村データを取得しました".format(total),
        )
    )


@app.post("/v1/favorites/toggle", response_model=FavoriteResponse)
async def toggle_favorite(
    request: Request,
    grants: InMemoryGrantStore = Depends(get_grant_store),
    favorites: InMemoryFavoritesStore = Depends(get_favorites),
    x_user_id: Optional[str] = Header(None),
):
    params = await _form_params(request)
    verify_nonce(params)
    grant_id = _last(params, "post_id")
    if not grant_id:
        raise HTTPException(status_code=400, detail="投稿IDが不正です")
    if not x_user_id:
        raise HTTPException(status_code=401, detail="ログインが必要です")
    if grants.get(grant_id) is None:
        raise HTTPException(status_code=404, detail="助成金が見つかりません")

    is_favorite, total = favorites.toggle(x_user_id, grant_id)
    action = "added" if is_favorite else "removed"
    return FavoriteResponse(
        data=FavoriteToggle(
            action=action,
            is_favorite=is_favorite,
            total_favorites=total,
            message="お気に入りに追加しました" if is_favorite else "お気に入りから削除しました",
        )
    )


SUGGESTION_ICONS = (
    ("IT", "💻"),
    ("ものづくり", "🏭"),
    ("小規模", "🏪"),
    ("事業再構築", "🔄"),
    ("雇用", "👥"),
    ("創業", "🚀"),
    ("持続化", "📈"),
    ("省エネ", "⚡"),
    ("環境", "🌱"),
)


def _suggestion_icon(text: str) -> str:
    for keyword, icon in SUGGESTION_ICONS:
        if keyword in text:
            return icon
    return "🔍"


@app.get("/v1/suggestions", response_model=SuggestionResponse)
def suggestions(request: Request, grants: InMemoryGrantStore = Depends(get_grant_store)):
    params = _query_params(request)
    query = _last(params, "query") or _last(params, "q")
    try:
        limit = max(1, min(int(_last(params, "limit", "10")), 20))
    except ValueError:
        limit = 10

    items: List[Suggestion] = []
    if query:
        records, _ = grants.find_grants(TextMatch.from_query(query, fields=("title",)), SortKey.DATE_DESC, 0, limit)
        items = [
            Suggestion(text=g.title, icon=_suggestion_icon(g.title), type="grant_title", grant_id=g.id)
            for g in records
        ]
    return SuggestionResponse(data=SuggestionData(suggestions=items, query=query))


@app.post("/v1/ai/search", response_model=AiSearchResponse, dependencies=[Depends(enforce_rate_limit)])
async def ai_search(
    request: Request,
    service: GrantSearchService = Depends(get_search_service),
    grants: InMemoryGrantStore = Depends(get_grant_store),
    x_user_id: Optional[str] = Header(None),
):
    """検索結果に案内文・関連度・検索候補を添える（関連度は参考値で並び順には使わない）。"""
    t0 = time.time()
    params = await _form_params(request)
    verify_nonce(params)
    if "query" in params and "search" not in params:
        params["search"] = params["query"]
    filters = normalize_filters(params)

    try:
        result = service.search(filters, user_id=x_user_id)
    except SearchUnavailableError:
        raise HTTPException(status_code=503, detail=SEARCH_ERROR)

    cards = []
    for card in result.items:
        grant = grants.get(card.id)
        score = advisory.relevance_score(filters.text, grant) if grant is not None else 0.0
        cards.append(AdvisoryCard(**card.model_dump(), relevance_score=score))

    summary, suggested = await advisory.generate_summary(filters.text, result.items, result.total_count)
    return AiSearchResponse(
        data=AiSearchData(
            grants=cards,
            count=result.total_count,
            total_pages=result.total_pages,
            current_page=result.page,
            ai_response=summary,
            keywords=advisory.extract_keywords(filters.text),
            suggestions=suggested,
            query_complexity=advisory.query_complexity(filters.text),
            processing_time_ms=int((time.time() - t0) * 1000),
        )
    )
