"""Import reconciliation: merge a parsed export into stored analytics.

Posts are matched to stored rows by permalink (one row per user and URL).
New permalinks are inserted; known ones are updated in place and keep
their id, so re-importing the same or a newer export never duplicates
posts. Daily engagement and follower points are merged by date and
upserted in bounded batches. Every import that reaches this stage writes
exactly one ScrapeRun.
"""

import hashlib
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from creator_analytics.config import settings
from creator_analytics.errors import EmptyImportError, IngestError, StorageUnavailableError
from creator_analytics.ingest import DiscoverySummary, ParsedExport, ParsedPost, parse_export
from creator_analytics.metrics import (
    AnalyticsSnapshot,
    DailySnapshot,
    PostSnapshot,
    RunSnapshot,
)
from creator_analytics.models import CompanyPage, DailyAnalytics, ExportType, ScrapedPost, ScrapeRun
from creator_analytics.storage import RowStore, chunked
from creator_analytics.workbook import read_workbook

logger = logging.getLogger(__name__)

DAILY_CONFLICT_KEY = ("user_id", "company_page_id", "metric_date")

# Activity id embedded in LinkedIn permalinks, e.g. urn:li:activity:7400...
_ACTIVITY_ID_RE = re.compile(r"(?:activity|ugcPost|share)[:-](\d{10,})")

# Upper bound on the number of error lines copied onto a ScrapeRun
_RUN_ERROR_LINES = 20


@dataclass
class ImportSummary:
    """Outcome of one import, returned to the caller."""

    run_id: int | None
    status: str
    export_type: ExportType
    file_name: str | None = None
    posts_found: int = 0
    posts_new: int = 0
    posts_updated: int = 0
    daily_rows: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    discovery: DiscoverySummary | None = None
    snapshot: AnalyticsSnapshot | None = None


def compute_file_hash(data: bytes) -> str:
    """Return the hex SHA-256 digest of the uploaded bytes."""
    return hashlib.sha256(data).hexdigest()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def extract_external_id(post_url: str) -> str | None:
    """Return the activity id embedded in a post permalink, if any."""
    match = _ACTIVITY_ID_RE.search(post_url)
    return match.group(1) if match else None


def ensure_company_page(store: RowStore, user_id: str) -> CompanyPage:
    """Return the user's active page, creating a placeholder page if needed.

    Raises:
        StorageUnavailableError: If the page cannot be read or created.
    """
    page = store.find_by_key(CompanyPage, user_id=user_id, is_active=True)
    if page is not None:
        return page

    page = store.find_by_key(
        CompanyPage,
        user_id=user_id,
        platform="linkedin",
        page_url=settings.placeholder_page_url,
    )
    if page is not None:
        logger.info("Reactivating placeholder page %d for user %s", page.id, user_id)
        return store.update(page, {"is_active": True})

    logger.info("Creating placeholder page for user %s", user_id)
    return store.insert(
        CompanyPage(
            user_id=user_id,
            platform="linkedin",
            page_url=settings.placeholder_page_url,
            page_name="Imported analytics",
            is_active=True,
        )
    )


def _post_values(post: ParsedPost, export_type: ExportType) -> dict[str, Any]:
    """Mutable post columns written on both insert and update."""
    values: dict[str, Any] = {
        "post_date": post.post_date,
        "reactions_count": post.reactions or 0,
        "comments_count": post.comments or 0,
        "shares_count": post.shares or 0,
        "engagement_total": post.engagement_total,
        "impressions": post.impressions,
        "clicks": post.clicks,
        "ctr": post.ctr,
        "engagement_rate": post.engagement_rate,
        "media_type": post.media_type,
        "source_type": f"{export_type.value}_export",
    }
    # Personal exports carry neither text nor video views; keep what is stored
    if post.content is not None:
        values["content"] = post.content
    if post.video_views is not None:
        values["video_views"] = post.video_views
    return values


def _merge_daily(parsed: ParsedExport) -> list[dict[str, Any]]:
    """Merge daily engagement and follower points into one row per date.

    Only the metrics the export actually carries are included, so a follower
    series never overwrites stored impressions with zeros.
    """
    engagement = getattr(parsed, "daily_engagement", [])
    columns: list[str] = []
    if engagement:
        columns += ["impressions", "engagements"]
    if parsed.follower_points:
        columns.append("new_followers")

    merged: dict[str, dict[str, Any]] = {}

    def row_for(day) -> dict[str, Any]:
        key = day.isoformat()
        if key not in merged:
            merged[key] = {"metric_date": day, **{c: 0 for c in columns}}
        return merged[key]

    for point in engagement:
        row = row_for(point.metric_date)
        row["impressions"] = point.impressions
        row["engagements"] = point.engagements
    for point in parsed.follower_points:
        row_for(point.metric_date)["new_followers"] = point.new_followers

    return [merged[key] for key in sorted(merged)]


def reconcile_import(
    store: RowStore,
    user_id: str,
    parsed: ParsedExport,
    file_name: str | None,
    file_hash: str | None = None,
    started_at: datetime | None = None,
) -> ImportSummary:
    """Persist a parsed export for ``user_id`` and record the run.

    A storage failure on one post or one daily batch is logged and reported
    in ``errors``; the remaining rows are still written. The run is marked
    "success" when at least one post was stored.

    Raises:
        StorageUnavailableError: If the owning page or the run record cannot
            be written.
    """
    started_at = started_at or _utcnow()
    export_type = parsed.export_type
    page = ensure_company_page(store, user_id)
    page_id = page.id

    summary = ImportSummary(
        run_id=None,
        status="error",
        export_type=export_type,
        file_name=file_name,
        posts_found=len(parsed.posts),
        warnings=list(parsed.warnings),
        discovery=getattr(parsed, "discovery", None),
    )
    storage_errors: list[str] = []

    for post in parsed.posts:
        values = _post_values(post, export_type)
        try:
            existing = store.find_by_key(ScrapedPost, user_id=user_id, post_url=post.post_url)
            if existing is None:
                store.insert(
                    ScrapedPost(
                        company_page_id=page_id,
                        user_id=user_id,
                        platform="linkedin",
                        external_id=extract_external_id(post.post_url),
                        post_url=post.post_url,
                        **values,
                    )
                )
                summary.posts_new += 1
            else:
                store.update(existing, values)
                summary.posts_updated += 1
        except StorageUnavailableError as exc:
            msg = f"Failed to store post {post.post_url[:80]}: {exc}"
            logger.warning(msg)
            storage_errors.append(msg)

    daily_rows = [
        {"user_id": user_id, "company_page_id": page_id, **row}
        for row in _merge_daily(parsed)
    ]
    for batch in chunked(daily_rows, settings.daily_upsert_batch_size):
        try:
            summary.daily_rows += store.upsert_batch(DailyAnalytics, batch, DAILY_CONFLICT_KEY)
        except StorageUnavailableError as exc:
            msg = (
                f"Failed to store daily rows {batch[0]['metric_date']} to "
                f"{batch[-1]['metric_date']}: {exc}"
            )
            logger.warning(msg)
            storage_errors.append(msg)

    completed_at = _utcnow()
    try:
        store.update(page, {"last_scraped_at": completed_at, "export_type": export_type.value})
    except StorageUnavailableError as exc:
        msg = f"Failed to update page {page_id}: {exc}"
        logger.warning(msg)
        storage_errors.append(msg)

    summary.errors = list(parsed.errors) + storage_errors
    processed = summary.posts_new + summary.posts_updated
    summary.status = "success" if processed > 0 else "error"

    error_message = None
    if summary.errors:
        error_message = "\n".join(summary.errors[:_RUN_ERROR_LINES])

    run = store.insert(
        ScrapeRun(
            company_page_id=page_id,
            user_id=user_id,
            status=summary.status,
            posts_found=summary.posts_found,
            posts_new=summary.posts_new,
            posts_updated=summary.posts_updated,
            daily_rows=summary.daily_rows,
            error_message=error_message,
            run_type="file_import",
            export_type=export_type.value,
            file_name=file_name,
            file_hash=file_hash,
            started_at=started_at,
            completed_at=completed_at,
        )
    )
    summary.run_id = run.id

    logger.info(
        "Import run %d (%s, %s): %d found, %d new, %d updated, %d daily rows, %d errors",
        run.id,
        export_type.value,
        summary.status,
        summary.posts_found,
        summary.posts_new,
        summary.posts_updated,
        summary.daily_rows,
        len(summary.errors),
    )

    summary.snapshot = load_snapshot(store, user_id)
    return summary


def _post_snapshot(row: ScrapedPost) -> PostSnapshot:
    return PostSnapshot(
        id=row.id,
        post_url=row.post_url,
        post_date=row.post_date,
        engagement_total=row.engagement_total,
        reactions=row.reactions_count,
        comments=row.comments_count,
        shares=row.shares_count,
        impressions=row.impressions,
        clicks=row.clicks,
        ctr=row.ctr,
        engagement_rate=row.engagement_rate,
        media_type=row.media_type,
        video_views=row.video_views,
        content=row.content,
    )


def _run_snapshot(row: ScrapeRun) -> RunSnapshot:
    return RunSnapshot(
        id=row.id,
        status=row.status,
        posts_found=row.posts_found,
        posts_new=row.posts_new,
        posts_updated=row.posts_updated,
        file_name=row.file_name,
        error_message=row.error_message,
        started_at=row.started_at,
        completed_at=row.completed_at,
    )


def load_snapshot(store: RowStore, user_id: str) -> AnalyticsSnapshot:
    """Read everything the metrics need for one user.

    Returns an empty snapshot when the user has no active page yet.
    """
    page = store.find_by_key(CompanyPage, user_id=user_id, is_active=True)
    if page is None:
        return AnalyticsSnapshot()

    posts = store.select_range(
        ScrapedPost, "post_date", user_id=user_id, company_page_id=page.id
    )
    daily = store.select_range(
        DailyAnalytics, "metric_date", user_id=user_id, company_page_id=page.id
    )
    runs = store.select_range(ScrapeRun, "id", descending=True, limit=1, user_id=user_id)

    return AnalyticsSnapshot(
        export_type=ExportType(page.export_type) if page.export_type else None,
        posts=tuple(_post_snapshot(p) for p in posts),
        daily=tuple(
            DailySnapshot(
                metric_date=d.metric_date,
                impressions=d.impressions,
                engagements=d.engagements,
                new_followers=d.new_followers,
            )
            for d in daily
        ),
        last_run=_run_snapshot(runs[0]) if runs else None,
    )


def import_file(
    session: Session,
    data: bytes,
    filename: str | None,
    user_id: str,
    content_type: str | None = None,
) -> ImportSummary:
    """Full import pipeline: decode, normalize, reconcile.

    Args:
        session: SQLAlchemy session.
        data: Raw upload bytes.
        filename: Original filename from the HTTP upload.
        user_id: Owner of the imported rows.
        content_type: MIME type sent by the client.

    Returns:
        ImportSummary for the run.

    Raises:
        UnsupportedFormatError: If the file is not CSV, XLS or XLSX.
        CorruptFileError: If the spreadsheet cannot be decoded.
        EmptyImportError: If the file holds no recognisable posts.
        IngestError: If the file exceeds the size limit.
        StorageUnavailableError: If the page or run record cannot be written.
    """
    started_at = _utcnow()

    if not data.strip():
        raise EmptyImportError("Uploaded file is empty.")
    if len(data) > settings.max_upload_bytes:
        raise IngestError(
            f"File exceeds the {settings.max_upload_size_mb} MB size limit."
        )

    workbook = read_workbook(data, filename, content_type)
    parsed = parse_export(workbook)

    return reconcile_import(
        RowStore(session),
        user_id,
        parsed,
        file_name=filename,
        file_hash=compute_file_hash(data),
        started_at=started_at,
    )
