from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Dict, Any
from uuid import UUID
from datetime import datetime, date
from enum import Enum


# ─── Enums ───
class KeywordType(str, Enum):
    regular = "regular"
    hpk = "hpk"
    rk = "rk"


class SearchMetric(str, Enum):
    top = "top"
    high_potential = "high-potential"
    rising = "rising"


class SortDirection(str, Enum):
    asc = "asc"
    desc = "desc"


class PeriodDisplayType(str, Enum):
    week = "week"
    month = "month"


# ─── Search Schemas ───
class SortSpec(BaseModel):
    field: str
    direction: SortDirection = SortDirection.desc


class KeywordFilters(BaseModel):
    query: Optional[str] = None
    category: Optional[str] = None
    sub_category_1: Optional[str] = None
    sub_category_2: Optional[str] = None
    upload_period: Optional[str] = None
    search_metric: Optional[str] = SearchMetric.top.value


class KeywordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    keyword: str
    search_volume: int
    product_click_score: Optional[str] = None
    sku_sales_score: Optional[str] = None
    ctr_score: Optional[str] = None
    ctor_score: Optional[str] = None
    average_price: Optional[str] = None
    available_products: int = 0
    rank: Optional[int] = None
    category_id: Optional[UUID] = None
    category: Optional[str] = None
    sub_category_1: Optional[str] = None
    sub_category_2: Optional[str] = None
    upload_period: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: bool
    is_hpk: bool
    is_rk: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class KeywordUpdate(BaseModel):
    """Direct single-row edit. Only provided fields are written."""
    search_volume: Optional[int] = Field(default=None, ge=0, le=2_147_483_647)
    product_click_score: Optional[str] = None
    sku_sales_score: Optional[str] = None
    ctr_score: Optional[str] = None
    ctor_score: Optional[str] = None
    average_price: Optional[str] = None
    available_products: Optional[int] = Field(default=None, ge=0, le=2_147_483_647)
    rank: Optional[int] = Field(default=None, ge=0, le=2_147_483_647)


# ─── Category Schemas ───
class CategoryNode(BaseModel):
    id: str
    name: str
    parent_id: Optional[str] = None
    level: int = 0
    keyword_count: int = 0


class CategoryTreeResponse(BaseModel):
    categories: List[CategoryNode]
    total_unique_keywords: int


# ─── Upload Schemas ───
class PeriodSummary(BaseModel):
    period: str
    distinct_keyword_count: int
    type: KeywordType


class FormattedPeriod(BaseModel):
    value: str
    label: str
    type: PeriodDisplayType


class UploadBatch(BaseModel):
    upload_period: str
    keyword_type: KeywordType
    total_keywords: int
    unique_keywords: int
    first_uploaded: Optional[datetime] = None
    last_uploaded: Optional[datetime] = None


class IngestRowError(BaseModel):
    row_index: int
    keyword: Optional[str] = None
    reason: str


class BatchFailure(BaseModel):
    chunk_index: int
    first_row_index: int
    row_count: int
    reason: str


class ReplaceRequest(BaseModel):
    """Rows keyed by field name (keyword, search_volume, sku_sales_score, ...)."""
    rows: List[Dict[str, Any]]


class ReplaceResult(BaseModel):
    upload_period: str
    keyword_type: KeywordType
    total_rows: int = 0
    inserted_count: int = 0
    deactivated_count: int = 0
    errors: List[IngestRowError] = []
    failed_chunks: List[BatchFailure] = []


class DeleteResult(BaseModel):
    upload_period: str
    keyword_type: KeywordType
    deactivated_count: int


class ImportJobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    filename: str
    upload_period: str
    keyword_type: KeywordType
    status: str
    total_rows: int = 0
    rows_imported: int = 0
    rows_error: int = 0
    rows_deactivated: int = 0
    failed_chunks: int = 0
    error_message: Optional[str] = None
    error_details: Optional[List[Dict[str, Any]]] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


# ─── Usage Schemas ───
class UsageBucket(BaseModel):
    period: str
    sessions: int = 0
    unique_users: int = 0
    activities: int = 0
    emails: List[str] = []


class ActivityCount(BaseModel):
    activity_type: str
    count: int


class ActivityTrackRequest(BaseModel):
    activity_type: str = Field(min_length=1, max_length=50)
    activity_data: Optional[Dict[str, Any]] = None
    session_id: Optional[UUID] = None


# ─── Pagination ───
class PaginationMeta(BaseModel):
    page: int
    page_size: int
    total: int
    total_pages: int
    has_next: bool = False
    has_prev: bool = False


class PaginatedResponse(BaseModel):
    data: List[Any]
    pagination: PaginationMeta
