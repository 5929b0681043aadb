"""JSON API routes for dashboard metrics and stored posts."""

import logging
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, Header, Query
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from creator_analytics.config import settings
from creator_analytics.database import get_session
from creator_analytics.importer import load_snapshot
from creator_analytics.metrics import (
    PostSnapshot,
    build_dashboard,
    filter_window,
)
from creator_analytics.storage import RowStore

logger = logging.getLogger(__name__)

router = APIRouter()

TIME_RANGE_PATTERN = "^(7d|30d|90d|all)$"


def get_user_id(x_user_id: str | None = Header(None)) -> str:
    """Resolve the calling user from the X-User-Id header.

    The header is set by the auth layer in front of the app. Without it the
    configured default user is used (single-user self-hosting).
    """
    if x_user_id and x_user_id.strip():
        return x_user_id.strip()
    return settings.default_user_id


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------


@router.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint for Docker and load balancers."""
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Dashboard metrics
# ---------------------------------------------------------------------------


@router.get("/api/metrics")
async def dashboard_metrics(
    time_range: str | None = Query(None, alias="range", pattern=TIME_RANGE_PATTERN),
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    """Return every dashboard view for the requested time range.

    Args:
        time_range: One of 7d, 30d, 90d, all (defaults to the configured range).

    Returns:
        JSON with metric cards, engagement and impression totals, trend
        series, follower growth, top/worst performers and the last run.
    """
    snapshot = load_snapshot(RowStore(db), user_id)
    dashboard = build_dashboard(snapshot, time_range or settings.default_time_range)
    return jsonable_encoder(dashboard)


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------

_SORT_KEYS = {
    "post_date": lambda p: p.post_date,
    "engagement": lambda p: p.engagement_total,
    "impressions": lambda p: p.impressions,
    "engagement_rate": lambda p: p.engagement_rate,
    "reactions": lambda p: p.reactions,
    "comments": lambda p: p.comments,
    "shares": lambda p: p.shares,
}


def _serialize_post(post: PostSnapshot) -> dict[str, Any]:
    data = asdict(post)
    data["post_date"] = str(post.post_date)
    return data


@router.get("/api/posts")
async def list_posts(
    time_range: str | None = Query(None, alias="range", pattern=TIME_RANGE_PATTERN),
    sort: str = Query(
        "post_date",
        pattern="^(post_date|engagement|impressions|engagement_rate|reactions|comments|shares)$",
    ),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    """Return the user's stored posts inside the time range, sorted.

    Args:
        time_range: One of 7d, 30d, 90d, all.
        sort: Field to sort by.
        order: Sort direction (asc or desc).

    Returns:
        JSON with the export type, total count and list of post objects.
    """
    snapshot = load_snapshot(RowStore(db), user_id)
    window = filter_window(snapshot, time_range or settings.default_time_range)
    posts = sorted(window.posts, key=_SORT_KEYS[sort], reverse=order == "desc")

    return {
        "export_type": snapshot.export_type.value if snapshot.export_type else None,
        "total": len(posts),
        "posts": [_serialize_post(p) for p in posts],
    }
