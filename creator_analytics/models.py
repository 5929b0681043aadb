"""SQLAlchemy ORM models for the analytics database."""

from datetime import date, datetime
from enum import Enum

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, relationship


class ExportType(str, Enum):
    COMPANY = "company"
    PERSONAL = "personal"


# Lookback in days per dashboard time range; None means no cutoff
TIME_RANGE_DAYS: dict[str, int | None] = {"7d": 7, "30d": 30, "90d": 90, "all": None}


class Base(DeclarativeBase):
    pass


class CompanyPage(Base):
    """The page or profile that owns a user's imported posts.

    Imports never need a live URL; a page created by an import carries
    the configured placeholder URL until the user connects a real one.
    """

    __tablename__ = "company_pages"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    user_id: str = Column(String, nullable=False, index=True)
    platform: str = Column(String(20), nullable=False, default="linkedin")
    page_url: str = Column(String, nullable=False)
    page_name: str | None = Column(String(100), nullable=True)
    is_active: bool = Column(Boolean, nullable=False, default=True)
    # Export type of the most recent import: "company" or "personal"
    export_type: str | None = Column(String(20), nullable=True)
    last_scraped_at: datetime | None = Column(DateTime, nullable=True)
    created_at: datetime = Column(DateTime, default=func.now())
    updated_at: datetime = Column(DateTime, default=func.now(), onupdate=func.now())

    posts = relationship(
        "ScrapedPost", back_populates="company_page", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "platform", "page_url", name="uq_user_page"),
    )

    def __repr__(self) -> str:
        return f"<CompanyPage id={self.id} user={self.user_id} url={self.page_url}>"


class ScrapedPost(Base):
    """One stored post, keyed by (user_id, post_url)."""

    __tablename__ = "scraped_posts"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    company_page_id: int = Column(
        Integer, ForeignKey("company_pages.id", ondelete="CASCADE"), nullable=False
    )
    user_id: str = Column(String, nullable=False, index=True)
    platform: str = Column(String(20), nullable=False, default="linkedin")
    external_id: str | None = Column(String, nullable=True)
    post_url: str = Column(String, nullable=False)
    content: str | None = Column(Text, nullable=True)
    post_date: date = Column(Date, nullable=False)
    reactions_count: int = Column(Integer, nullable=False, default=0)
    comments_count: int = Column(Integer, nullable=False, default=0)
    shares_count: int = Column(Integer, nullable=False, default=0)
    engagement_total: int = Column(Integer, nullable=False, default=0)
    media_type: str = Column(String(20), nullable=False, default="text")
    impressions: int = Column(Integer, nullable=False, default=0)
    clicks: int = Column(Integer, nullable=False, default=0)
    ctr: float | None = Column(Float, nullable=True)
    engagement_rate: float = Column(Float, nullable=False, default=0.0)
    video_views: int | None = Column(Integer, nullable=True)
    # "company_export" or "personal_export"
    source_type: str = Column(String(30), nullable=False, default="company_export")
    created_at: datetime = Column(DateTime, default=func.now())
    updated_at: datetime = Column(DateTime, default=func.now(), onupdate=func.now())

    company_page = relationship("CompanyPage", back_populates="posts")

    __table_args__ = (
        UniqueConstraint("user_id", "post_url", name="uq_user_post_url"),
    )

    def __repr__(self) -> str:
        return f"<ScrapedPost id={self.id} date={self.post_date} engagement={self.engagement_total}>"


class DailyAnalytics(Base):
    """Account-level metrics for one calendar day (personal exports)."""

    __tablename__ = "daily_analytics"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    user_id: str = Column(String, nullable=False)
    company_page_id: int = Column(
        Integer, ForeignKey("company_pages.id", ondelete="CASCADE"), nullable=False
    )
    metric_date: date = Column(Date, nullable=False)
    impressions: int = Column(Integer, nullable=False, default=0)
    engagements: int = Column(Integer, nullable=False, default=0)
    new_followers: int = Column(Integer, nullable=False, default=0)
    created_at: datetime = Column(DateTime, default=func.now())
    updated_at: datetime = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint(
            "user_id", "company_page_id", "metric_date", name="uq_user_page_date"
        ),
    )

    def __repr__(self) -> str:
        return f"<DailyAnalytics user={self.user_id} date={self.metric_date}>"


class ScrapeRun(Base):
    """Audit record for one import. Written once, never updated."""

    __tablename__ = "scrape_runs"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    company_page_id: int = Column(
        Integer, ForeignKey("company_pages.id", ondelete="CASCADE"), nullable=False
    )
    user_id: str = Column(String, nullable=False, index=True)
    # "success" or "error"
    status: str = Column(String(20), nullable=False)
    posts_found: int = Column(Integer, nullable=False, default=0)
    posts_new: int = Column(Integer, nullable=False, default=0)
    posts_updated: int = Column(Integer, nullable=False, default=0)
    daily_rows: int = Column(Integer, nullable=False, default=0)
    error_message: str | None = Column(Text, nullable=True)
    run_type: str = Column(String(20), nullable=False, default="file_import")
    export_type: str | None = Column(String(20), nullable=True)
    file_name: str | None = Column(String, nullable=True)
    file_hash: str | None = Column(String(64), nullable=True)
    started_at: datetime | None = Column(DateTime, nullable=True)
    completed_at: datetime | None = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<ScrapeRun id={self.id} status={self.status} file={self.file_name}>"
