from pydantic import BaseModel, Field, StrictInt
from pydantic.alias_generators import to_camel
from typing import List, Optional
from datetime import datetime


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys and accepting either form."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class ClickEvent(CamelModel):
    timestamp: datetime
    source_origin: str
    coarse_location: str

    class Config:
        frozen = True


class ShortLink(CamelModel):
    id: str
    original_url: str
    short_code: str
    is_custom_code: bool
    created_at: datetime
    expires_at: datetime
    click_count: int = 0
    click_log: List[ClickEvent] = Field(default_factory=list)

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


class LinkCreate(CamelModel):
    original_url: str
    custom_code: Optional[str] = None
    validity_minutes: Optional[StrictInt] = None


class LinkBulkCreate(CamelModel):
    links: List[LinkCreate] = Field(min_length=1)


class ShortLinkOut(ShortLink):
    short_url: str


class RegistrySummary(CamelModel):
    total: int
    active: int
    expired: int
    total_clicks: int


class PurgeResult(CamelModel):
    removed: int
