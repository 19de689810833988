from sqlalchemy import Column, String, Integer, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from src.shortener.db.base import BaseModel


class ShortLinkRecord(BaseModel):
    __tablename__ = "short_links"

    link_id = Column(String(32), unique=True, index=True, nullable=False)
    original_url = Column(String(2048), nullable=False)
    short_code = Column(String(32), unique=True, index=True, nullable=False)
    is_custom_code = Column(Boolean, default=False, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    click_count = Column(Integer, default=0, nullable=False)

    clicks = relationship(
        "ClickEventRecord",
        back_populates="link",
        cascade="all, delete-orphan",
        order_by="ClickEventRecord.id",
    )


class ClickEventRecord(BaseModel):
    __tablename__ = "click_events"

    short_link_id = Column(Integer, ForeignKey("short_links.id", ondelete="CASCADE"), index=True, nullable=False)
    clicked_at = Column(DateTime(timezone=True), nullable=False)
    source_origin = Column(String, nullable=False)
    coarse_location = Column(String, nullable=False)

    link = relationship("ShortLinkRecord", back_populates="clicks")
