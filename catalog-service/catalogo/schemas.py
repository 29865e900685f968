import logging
import math
import re
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

SENTINELS = {"", "all", "any"}
DEFAULT_STATUS = "active"
DEFAULT_PAGE_SIZE = 12
MAX_PAGE_SIZE = 100

# public sort field -> column
SORT_FIELDS = {
    "created_at": "created_at",
    "createdAt": "created_at",
    "updated_at": "updated_at",
    "price": "price",
    "area": "area",
    "bedrooms": "bedrooms",
    "title": "title",
}

# select options used by the catalog page
SORT_ALIASES = {
    "newest": ("created_at", False),
    "price_asc": ("price", True),
    "price_desc": ("price", False),
    "area_desc": ("area", False),
}

_AT_LEAST = re.compile(r"^(\d+)\s*\+$")


class SortKey(BaseModel):
    column: str = "created_at"
    ascending: bool = False


def parse_sort(raw: Any) -> SortKey:
    if raw is None or isinstance(raw, SortKey):
        return raw or SortKey()
    if isinstance(raw, dict):
        return SortKey(**raw)

    text = str(raw).strip()
    if text in SORT_ALIASES:
        column, ascending = SORT_ALIASES[text]
        return SortKey(column=column, ascending=ascending)

    # "price:asc" or "price_asc"
    field, _, direction = text.partition(":")
    if not direction:
        field, _, direction = text.rpartition("_")
        if direction not in ("asc", "desc"):
            field, direction = text, "desc"
    column = SORT_FIELDS.get(field)
    if column is None or direction.lower() not in ("asc", "desc"):
        logger.warning("Unknown sort key %r, using default ordering", raw)
        return SortKey()
    return SortKey(column=column, ascending=direction.lower() == "asc")


def _to_number(value: Any, field: str) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().replace(",", "")
        if not value:
            return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        logger.warning("Dropping non-numeric %s filter: %r", field, value)
        return None
    if math.isnan(num) or num <= 0:
        if num < 0:
            logger.warning("Dropping negative %s filter: %r", field, value)
        return None
    return num


def _to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


class FilterRequest(BaseModel):
    """Normalized catalog search. Sentinels never survive validation."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    property_type: Optional[str] = Field(None, validation_alias=AliasChoices("propertyType", "property_type"))
    district: Optional[str] = None
    bedrooms: Optional[Union[int, str]] = Field(None, validation_alias=AliasChoices("bedrooms", "bedroomsExact"))
    min_price: Optional[float] = Field(None, validation_alias=AliasChoices("minPrice", "min_price"))
    max_price: Optional[float] = Field(None, validation_alias=AliasChoices("maxPrice", "max_price"))
    min_area: Optional[float] = Field(None, validation_alias=AliasChoices("minArea", "min_area"))
    search: Optional[str] = Field(None, validation_alias=AliasChoices("search", "searchText"))
    status: str = DEFAULT_STATUS
    sort: SortKey = Field(default_factory=SortKey, validation_alias=AliasChoices("sortBy", "sortKey", "sort"))
    limit: Optional[int] = None
    offset: Optional[int] = None

    @field_validator("property_type", "district", mode="before")
    @classmethod
    def _strip_sentinel(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return None if v.lower() in SENTINELS else v

    @field_validator("search", mode="before")
    @classmethod
    def _strip_search(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("status", mode="before")
    @classmethod
    def _default_status(cls, v):
        if v is None or str(v).strip().lower() in SENTINELS:
            return DEFAULT_STATUS
        return str(v).strip()

    @field_validator("bedrooms", mode="before")
    @classmethod
    def _bedrooms(cls, v):
        if v is None or isinstance(v, bool):
            return None
        if isinstance(v, int):
            return v if v >= 0 else None
        text = str(v).strip().lower()
        if text in SENTINELS:
            return None
        m = _AT_LEAST.match(text)
        if m:
            return f"{int(m.group(1))}+"
        n = _to_int(text)
        if n is None or n < 0:
            logger.warning("Dropping invalid bedrooms filter: %r", v)
            return None
        return n

    @field_validator("min_price", "max_price", "min_area", mode="before")
    @classmethod
    def _numbers(cls, v, info):
        return _to_number(v, info.field_name)

    @field_validator("sort", mode="before")
    @classmethod
    def _sort(cls, v):
        return parse_sort(v)

    @field_validator("limit", mode="before")
    @classmethod
    def _limit(cls, v):
        n = _to_int(v)
        if n is None or n < 1:
            return None
        return min(n, MAX_PAGE_SIZE)

    @field_validator("offset", mode="before")
    @classmethod
    def _offset(cls, v):
        n = _to_int(v)
        if n is not None and n < 0:
            raise ValueError("offset must not be negative")
        return n

    @property
    def min_bedrooms(self) -> Optional[int]:
        """Lower bound for "N+" bedroom filters, None for exact ones."""
        if isinstance(self.bedrooms, str):
            return int(self.bedrooms.rstrip("+"))
        return None


class Result(BaseModel):
    success: bool
    data: Any = None
    error: Optional[str] = None
    code: Optional[str] = None


PropertyStatus = Literal["active", "sold", "rented", "inactive"]


class PropertyIn(BaseModel):
    title: str
    description: Optional[str] = None
    property_type: Optional[str] = None
    district: Optional[str] = None
    location: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = "PEN"
    area: Optional[float] = Field(None, ge=0)
    bedrooms: Optional[int] = Field(None, ge=0)
    bathrooms: Optional[float] = Field(None, ge=0)
    parking_spots: Optional[int] = Field(None, ge=0)
    year_built: Optional[int] = None
    floors: Optional[int] = Field(None, ge=0)
    featured: bool = False
    status: PropertyStatus = "active"
    images: List[str] = Field(default_factory=list)
    features: List[str] = Field(default_factory=list)
    agent_id: Optional[int] = None

    @field_validator("price", "area", "bathrooms", mode="before")
    @classmethod
    def _blank_number(cls, v):
        # form posts send "" for untouched numeric inputs
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("bedrooms", "parking_spots", "year_built", "floors", mode="before")
    @classmethod
    def _blank_int(cls, v):
        if isinstance(v, str):
            if not v.strip():
                return None
            return int(float(v))
        return v

    @field_validator("featured", mode="before")
    @classmethod
    def _checkbox(cls, v):
        if v is None:
            return None
        if isinstance(v, str):
            return v.strip().lower() in ("on", "true", "1", "yes")
        return bool(v)


class PropertyUpdate(PropertyIn):
    title: Optional[str] = None
    featured: Optional[bool] = None
    status: Optional[PropertyStatus] = None


InquiryStatus = Literal["new", "read", "responded"]


class InquiryIn(BaseModel):
    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    phone: Optional[str] = None
    message: str = Field(min_length=1)
    property_id: Optional[int] = None


class InquiryStatusUpdate(BaseModel):
    status: InquiryStatus


class Credentials(BaseModel):
    email: str
    password: str
    data: Dict[str, Any] = Field(default_factory=dict)


class PasswordReset(BaseModel):
    email: str


class PasswordUpdate(BaseModel):
    access_token: str
    refresh_token: str
    password: str = Field(min_length=6)


class SessionTokens(BaseModel):
    access_token: str
    refresh_token: str
