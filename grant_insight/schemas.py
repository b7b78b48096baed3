from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum


class ApplicationStatus(str, Enum):
    OPEN = "open"
    UPCOMING = "upcoming"
    CLOSED = "closed"


class Difficulty(str, Enum):
    EASY = "easy"
    NORMAL = "normal"
    HARD = "hard"


class SortKey(str, Enum):
    DATE_DESC = "date_desc"
    DATE_ASC = "date_asc"
    AMOUNT_DESC = "amount_desc"
    AMOUNT_ASC = "amount_asc"
    DEADLINE_ASC = "deadline_asc"
    SUCCESS_RATE_DESC = "success_rate_desc"
    FEATURED_FIRST = "featured_first"


class AmountBucket(str, Enum):
    UNDER_100 = "0-100"
    FROM_100_TO_500 = "100-500"
    FROM_500_TO_1000 = "500-1000"
    FROM_1000_TO_3000 = "1000-3000"
    OVER_3000 = "3000+"


# ========= 保存データ =========

class Grant(BaseModel):
    id: str
    title: str
    excerpt: str = ""
    body: str = ""
    organization: str = ""
    target: str = Field("", description="対象者")
    eligible_expenses: str = Field("", description="対象経費")
    required_documents: str = ""
    ai_summary: str = ""
    max_amount: str = Field("", description="表示用の上限額 (例: 500万円)")
    max_amount_numeric: int = Field(0, ge=0, description="上限額（円）")
    subsidy_rate: str = ""
    deadline: str = ""
    deadline_timestamp: Optional[int] = None
    application_status: ApplicationStatus = ApplicationStatus.OPEN
    difficulty: Difficulty = Difficulty.NORMAL
    success_rate: Optional[int] = Field(None, ge=0, le=100)
    is_featured: bool = False
    categories: List[str] = Field(default_factory=list, description="カテゴリーのスラッグ")
    tags: List[str] = Field(default_factory=list, description="タグのスラッグ")
    prefecture: Optional[str] = Field(None, description="都道府県スラッグ（全国対象なら None）")
    municipalities: List[str] = Field(default_factory=list, description="市町村スラッグ")
    thumbnail_url: Optional[str] = None
    created_at: datetime
    published: bool = True


class Category(BaseModel):
    name: str
    slug: str
    count: int = 0


class Prefecture(BaseModel):
    name: str
    slug: str
    region: str


class Municipality(BaseModel):
    name: str
    slug: str
    prefecture_slug: Optional[str] = None
    count: int = 0
    is_prefecture_level: bool = False


# ========= 検索 =========

class SearchFilter(BaseModel):
    text: str = ""
    category_slugs: List[str] = Field(default_factory=list)
    tag_slugs: List[str] = Field(default_factory=list)
    prefecture_slugs: List[str] = Field(default_factory=list)
    municipality_slugs: List[str] = Field(default_factory=list)
    region: Optional[str] = None
    amount_bucket: Optional[AmountBucket] = None
    statuses: List[ApplicationStatus] = Field(default_factory=list)
    difficulties: List[Difficulty] = Field(default_factory=list)
    featured_only: bool = False
    sort: SortKey = SortKey.DATE_DESC
    page: int = Field(1, ge=1)
    page_size: int = Field(12, ge=6, le=30)

    def has_facets(self) -> bool:
        return bool(
            self.text or self.category_slugs or self.tag_slugs or self.prefecture_slugs
            or self.municipality_slugs or self.region or self.amount_bucket
            or self.statuses or self.difficulties or self.featured_only
        )


class GrantCard(BaseModel):
    id: str
    title: str
    permalink: str
    excerpt: str
    thumbnail_url: str
    amount_display: str
    deadline_display: str
    organization: str
    subsidy_rate: str
    status: ApplicationStatus
    status_label: str
    difficulty_label: str
    success_rate: Optional[int] = None
    is_featured: bool
    deadline_soon: bool = False
    category_names: List[str] = Field(default_factory=list)
    is_favorite: bool = False


class SearchResult(BaseModel):
    items: List[GrantCard]
    total_count: int
    total_pages: int
    page: int
    page_size: int


# ========= HTTP レスポンス =========

class SearchStats(BaseModel):
    total_found: int
    current_page: int
    total_pages: int
    posts_per_page: int
    showing_from: int
    showing_to: int


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_posts: int
    posts_per_page: int


class QueryInfo(BaseModel):
    search: str
    filters_applied: bool
    sort: SortKey


class SearchData(BaseModel):
    grants: List[GrantCard]
    stats: SearchStats
    pagination: Pagination
    query_info: QueryInfo
    debug: Optional[Dict[str, Any]] = None


class SearchResponse(BaseModel):
    success: bool = True
    data: SearchData


class ErrorResponse(BaseModel):
    success: bool = False
    message: str


class RegionGroup(BaseModel):
    slug: str
    name: str
    prefectures: List[Prefecture]


class TaxonomyData(BaseModel):
    categories: List[Category]
    regions: List[RegionGroup]


class TaxonomyResponse(BaseModel):
    success: bool = True
    data: TaxonomyData


class MunicipalityData(BaseModel):
    data: Dict[str, List[Municipality]]
    prefecture_count: int
    municipality_count: int
    message: str


class MunicipalityResponse(BaseModel):
    success: bool = True
    data: MunicipalityData


class FavoriteToggle(BaseModel):
    action: str
    is_favorite: bool
    total_favorites: int
    message: str


class FavoriteResponse(BaseModel):
    success: bool = True
    data: FavoriteToggle


class Suggestion(BaseModel):
    text: str
    icon: str
    type: str
    grant_id: Optional[str] = None


class SuggestionData(BaseModel):
    suggestions: List[Suggestion]
    query: str


class SuggestionResponse(BaseModel):
    success: bool = True
    data: SuggestionData


class AdvisoryCard(GrantCard):
    relevance_score: float = Field(0.0, ge=0.0, le=1.0)


class AiSearchData(BaseModel):
    grants: List[AdvisoryCard]
    count: int
    total_pages: int
    current_page: int
    ai_response: str
    keywords: List[str]
    suggestions: List[str]
    query_complexity: str
    processing_time_ms: int


class AiSearchResponse(BaseModel):
    success: bool = True
    data: AiSearchData
