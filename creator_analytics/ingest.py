"""LinkedIn analytics export normalization.

Turns a RawWorkbook into canonical records. Two export schemas exist:

Personal profile export (creator analytics, verified Feb 2026):
  Sheet "DISCOVERY"  -> Summary rows: period label, "Impressions", "Members reached"
  Sheet "ENGAGEMENT" -> Daily totals: Date | Impressions | Engagements
  Sheet "TOP POSTS"  -> Two side-by-side tables (max 50 posts each):
                        Post URL | Post publish date | Engagements   (A-C)
                        Post URL | Post publish date | Impressions   (E-G)
  Sheet "FOLLOWERS"  -> "Total followers on ..." row, then Date | New followers

Company page export (page analytics "All posts"):
  One sheet with a description row, then a per-post table:
  Post title | Post link | Content type | Created date | Impressions |
  Clicks | Click through rate (CTR) | Likes | Comments | Reposts | ...
  CSV downloads of the same table have the header on the first row.

Headers are matched case-insensitively against English and German labels.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, ClassVar

from openpyxl.utils.datetime import from_excel

from creator_analytics.errors import EmptyImportError
from creator_analytics.models import ExportType
from creator_analytics.rates import percentage
from creator_analytics.workbook import RawWorkbook

logger = logging.getLogger(__name__)

# Rows scanned when looking for a header row
HEADER_SCAN_ROWS = 10

# Sheet names (normalized) per export section
SHEETS_TOP_POSTS = ("top posts", "top-posts", "top beiträge", "top-beiträge")
SHEETS_ENGAGEMENT = ("engagement", "interaktionen")
SHEETS_FOLLOWERS = ("followers", "follower")
SHEETS_DISCOVERY = ("discovery", "entdeckung")

COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "post_url": (
        "Post URL", "Post link", "Permalink", "URL",
        "Beitrags-URL", "Beitragslink", "Link zum Beitrag",
    ),
    "content": (
        "Post content", "Post text", "Post title", "Content",
        "Beitragsinhalt", "Beitragstext", "Beitragstitel", "Inhalt",
    ),
    "post_date": (
        "Date", "Created date", "Published date", "Post publish date",
        "Datum", "Erstellt am", "Erstellungsdatum", "Veröffentlichungsdatum",
        "Veröffentlicht am", "Veröffentlichungsdatum des Beitrags",
    ),
    "impressions": ("Impressions", "Impressionen"),
    "clicks": ("Clicks", "Klicks"),
    "ctr": (
        "Click through rate (CTR)", "Click through rate", "Click-through rate",
        "CTR", "Klickrate", "Klickrate (CTR)",
    ),
    "reactions": ("Reactions", "Likes", "Reaktionen"),
    "comments": ("Comments", "Kommentare"),
    "shares": ("Reposts", "Shares", "Reposts/Shares", "Geteilte Inhalte", "Geteilt"),
    "video_views": ("Video views", "Videoaufrufe", "Videoansichten"),
    "media_type": ("Content type", "Media type", "Medientyp", "Inhaltstyp"),
    "engagements": ("Engagements", "Interaktionen"),
    "new_followers": ("New followers", "Neue Follower"),
}

# Metric columns that mark a per-post (company) table
_BREAKDOWN_FIELDS = ("reactions", "comments", "shares", "impressions")

# Header fragments that mark an otherwise unknown permalink column
_URL_FALLBACK_TOKENS = ("url", "link")

_THOUSANDS_RE = re.compile(r"^-?\d{1,3}(?:[.,' ]\d{3})+$")
# Trailing time of day, with optional seconds, AM/PM marker and offset
_TIME_SUFFIX_RE = re.compile(
    r"(?:T|\s+)\d{1,2}:\d{2}(?::\d{2}(?:\.\d+)?)?"
    r"(?:\s*[AaPp]\.?[Mm]\.?)?\s*(?:Z|UTC|[+-]\d{2}:?\d{2})?$"
)

_DATE_FORMATS = (
    "%m/%d/%Y",
    "%Y-%m-%d",
    "%d.%m.%Y",
    "%d/%m/%Y",
    "%Y/%m/%d",
    "%b %d, %Y",
    "%B %d, %Y",
    "%m/%d/%y",
    "%d.%m.%y",
)

# ---------------------------------------------------------------------------
# Canonical records
# ---------------------------------------------------------------------------


@dataclass
class ParsedPost:
    """One post, independent of the export schema it came from.

    Build instances with from_breakdown() or from_aggregate() so that
    engagement_total is either derived from the breakdown or taken from the
    sheet, never both.
    """

    post_url: str
    post_date: date
    engagement_total: int
    impressions: int = 0
    clicks: int = 0
    ctr: float | None = None
    engagement_rate: float = 0.0
    reactions: int | None = None
    comments: int | None = None
    shares: int | None = None
    content: str | None = None
    media_type: str = "text"
    video_views: int | None = None

    @classmethod
    def from_breakdown(
        cls,
        post_url: str,
        post_date: date,
        reactions: int,
        comments: int,
        shares: int,
        impressions: int = 0,
        **extra: Any,
    ) -> "ParsedPost":
        total = reactions + comments + shares
        return cls(
            post_url=post_url,
            post_date=post_date,
            engagement_total=total,
            impressions=impressions,
            engagement_rate=percentage(total, impressions),
            reactions=reactions,
            comments=comments,
            shares=shares,
            **extra,
        )

    @classmethod
    def from_aggregate(
        cls,
        post_url: str,
        post_date: date,
        engagements: int,
        impressions: int = 0,
        **extra: Any,
    ) -> "ParsedPost":
        return cls(
            post_url=post_url,
            post_date=post_date,
            engagement_total=engagements,
            impressions=impressions,
            engagement_rate=percentage(engagements, impressions),
            **extra,
        )


@dataclass
class DailyEngagementPoint:
    metric_date: date
    impressions: int = 0
    engagements: int = 0


@dataclass
class FollowerPoint:
    metric_date: date
    new_followers: int = 0


@dataclass
class DiscoverySummary:
    """Summary block from the DISCOVERY sheet, passed through for display."""

    period: str | None = None
    impressions: int = 0
    members_reached: int = 0


@dataclass
class ParsedExport:
    """Structured result from normalizing an analytics export.

    ``errors`` lists rows that were dropped; ``warnings`` lists sheets or
    columns that were missing or duplicated. Neither aborts the import.
    """

    posts: list[ParsedPost] = field(default_factory=list)
    follower_points: list[FollowerPoint] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    export_type: ClassVar[ExportType]


@dataclass
class CompanyExport(ParsedExport):
    export_type: ClassVar[ExportType] = ExportType.COMPANY


@dataclass
class PersonalExport(ParsedExport):
    daily_engagement: list[DailyEngagementPoint] = field(default_factory=list)
    discovery: DiscoverySummary | None = None

    export_type: ClassVar[ExportType] = ExportType.PERSONAL


# ---------------------------------------------------------------------------
# Cell parsing
# ---------------------------------------------------------------------------


def _normalize_label(value: Any) -> str:
    return " ".join(str(value).split()).casefold()


_ALIAS_LOOKUP: dict[str, tuple[str, ...]] = {
    key: tuple(_normalize_label(v) for v in variants)
    for key, variants in COLUMN_ALIASES.items()
}


def _parse_count(value: Any, default: int | None = 0) -> int | None:
    """Convert a count cell to int. Blank or unreadable cells give ``default``.

    Accepts thousands separators from either locale ("1,316" and "1.316").
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value) if math.isfinite(value) else default
    text = str(value).replace("\xa0", " ").strip()
    if not text:
        return default
    if _THOUSANDS_RE.match(text):
        return int(re.sub(r"[.,' ]", "", text))
    try:
        number = float(text.replace(",", "."))
    except ValueError:
        return default
    return int(number) if math.isfinite(number) else default


def _parse_rate(value: Any) -> float | None:
    """Convert a rate cell to a percentage with two decimals.

    Blank cells mean "not available" and return None. Fractions up to 1
    (as exported by page analytics) are scaled to percentages; strings with
    a percent sign are taken as percentages already.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        rate = float(value)
        if not math.isfinite(rate):
            return None
        if rate <= 1:
            rate *= 100
        return round(rate, 2)

    text = str(value).replace("\xa0", " ").strip()
    if not text:
        return None
    is_percent = "%" in text
    try:
        rate = float(text.replace("%", "").strip().replace(",", "."))
    except ValueError:
        return None
    if not math.isfinite(rate):
        return None
    if not is_percent and rate <= 1:
        rate *= 100
    return round(rate, 2)


def _parse_date(value: Any) -> date | None:
    """Parse a date cell to a calendar date. Time components are dropped."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        # Excel serial day number
        if not math.isfinite(value) or value < 1:
            return None
        try:
            converted = from_excel(value)
        except (ValueError, OverflowError):
            return None
        return converted.date() if isinstance(converted, datetime) else None

    text = str(value).strip()
    if not text:
        return None
    candidates = [text]
    head = _TIME_SUFFIX_RE.sub("", text)
    if head != text:
        candidates.append(head)
    for candidate in candidates:
        for fmt in _DATE_FORMATS:
            try:
                return datetime.strptime(candidate, fmt).date()
            except ValueError:
                continue
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None


def _parse_url(value: Any) -> str | None:
    """Return the post permalink, or None if the cell is not an http(s) URL."""
    if value is None:
        return None
    url = str(value).strip()
    if not url.lower().startswith(("http://", "https://")):
        return None
    return url


def _detect_media_type(value: Any) -> str:
    """Map a content-type label to text / image / video / carousel."""
    if not isinstance(value, str):
        return "text"
    label = value.casefold()
    if "video" in label:
        return "video"
    if any(k in label for k in ("carousel", "karussell", "document", "dokument")):
        return "carousel"
    if any(k in label for k in ("image", "photo", "bild", "foto")):
        return "image"
    return "text"


def _cell(row: list[Any], index: int | None) -> Any:
    if index is None or index >= len(row):
        return None
    return row[index]


def _is_blank(row: list[Any]) -> bool:
    return all(v is None for v in row)


# ---------------------------------------------------------------------------
# Sheet and header lookup
# ---------------------------------------------------------------------------


def _get_sheet(workbook: RawWorkbook, names: tuple[str, ...]) -> tuple[str, list[list[Any]]] | None:
    """Find a sheet by any of ``names`` (case-insensitive)."""
    for sheet_name, rows in workbook.items():
        if _normalize_label(sheet_name) in names:
            return sheet_name, rows
    return None


def _map_columns(header: list[Any]) -> dict[str, int]:
    """Map canonical field names to column indexes for one header row.

    The first matching column wins, so in side-by-side tables only the
    left table is mapped.
    """
    labels = [_normalize_label(h) if h is not None else "" for h in header]
    mapping: dict[str, int] = {}
    for key, variants in _ALIAS_LOOKUP.items():
        for index, label in enumerate(labels):
            if label and label in variants:
                mapping[key] = index
                break

    if "post_url" not in mapping:
        for index, label in enumerate(labels):
            if any(token in label for token in _URL_FALLBACK_TOKENS):
                mapping["post_url"] = index
                break
    return mapping


def _find_header(
    rows: list[list[Any]],
    required: str,
    any_of: tuple[str, ...] = (),
) -> tuple[int, dict[str, int]] | None:
    """Locate the header row within the first HEADER_SCAN_ROWS rows.

    Returns:
        (row index, column mapping) for the first row that maps ``required``
        and, when given, at least one of ``any_of``.
    """
    for index, row in enumerate(rows[:HEADER_SCAN_ROWS]):
        mapping = _map_columns(row)
        if required not in mapping:
            continue
        if any_of and not any(k in mapping for k in any_of):
            continue
        return index, mapping
    return None


def _find_post_table(workbook: RawWorkbook) -> tuple[str, int, dict[str, int]] | None:
    """Find the first sheet holding a per-post table with metric columns."""
    for sheet_name, rows in workbook.items():
        found = _find_header(rows, "post_url", _BREAKDOWN_FIELDS)
        if found:
            return sheet_name, found[0], found[1]
    return None


def detect_export_type(workbook: RawWorkbook) -> ExportType | None:
    """Classify a workbook as a company or personal export.

    A TOP POSTS sheet only ever appears in personal exports, so its presence
    decides "personal" even when a generic posts table is also present.
    """
    if _get_sheet(workbook, SHEETS_TOP_POSTS) is not None:
        return ExportType.PERSONAL
    if _find_post_table(workbook) is not None:
        return ExportType.COMPANY
    if _get_sheet(workbook, SHEETS_ENGAGEMENT) is not None:
        return ExportType.PERSONAL
    return None


# ---------------------------------------------------------------------------
# Company export
# ---------------------------------------------------------------------------


def _parse_company_posts(
    sheet_name: str,
    rows: list[list[Any]],
    header_index: int,
    columns: dict[str, int],
    result: ParsedExport,
) -> None:
    """Parse the per-post table of a company export into result.posts."""
    seen_urls: set[str] = set()

    for offset, row in enumerate(rows[header_index + 1 :]):
        row_number = header_index + offset + 2
        if _is_blank(row):
            continue

        post_url = _parse_url(_cell(row, columns["post_url"]))
        if post_url is None:
            result.errors.append(
                f"{sheet_name} row {row_number}: missing or invalid post URL, row skipped."
            )
            continue

        post_date = _parse_date(_cell(row, columns.get("post_date")))
        if post_date is None:
            result.errors.append(
                f"{sheet_name} row {row_number}: unreadable date for {post_url}, row skipped."
            )
            continue

        if post_url in seen_urls:
            result.warnings.append(
                f"{sheet_name} row {row_number}: duplicate post skipped ({post_url[:60]})."
            )
            continue
        seen_urls.add(post_url)

        impressions = _parse_count(_cell(row, columns.get("impressions")))
        clicks = _parse_count(_cell(row, columns.get("clicks")))
        ctr = _parse_rate(_cell(row, columns.get("ctr")))
        if ctr is None and impressions > 0 and "clicks" in columns:
            ctr = percentage(clicks, impressions)

        video_views = _parse_count(_cell(row, columns.get("video_views")), default=None)

        content = _cell(row, columns.get("content"))

        result.posts.append(
            ParsedPost.from_breakdown(
                post_url=post_url,
                post_date=post_date,
                reactions=_parse_count(_cell(row, columns.get("reactions"))),
                comments=_parse_count(_cell(row, columns.get("comments"))),
                shares=_parse_count(_cell(row, columns.get("shares"))),
                impressions=impressions,
                clicks=clicks,
                ctr=ctr,
                content=str(content) if content is not None else None,
                media_type=_detect_media_type(_cell(row, columns.get("media_type"))),
                video_views=video_views,
            )
        )


def _parse_company(workbook: RawWorkbook) -> CompanyExport:
    result = CompanyExport()
    found = _find_post_table(workbook)
    if found is None:
        return result

    sheet_name, header_index, columns = found
    for key in ("content", "video_views"):
        if key not in columns:
            result.warnings.append(
                f"{sheet_name}: optional column '{key}' not found, skipped."
            )
    if "post_date" not in columns:
        result.warnings.append(f"{sheet_name}: no date column found.")

    _parse_company_posts(sheet_name, workbook[sheet_name], header_index, columns, result)

    followers = _get_sheet(workbook, SHEETS_FOLLOWERS)
    if followers:
        result.follower_points.extend(_parse_followers_sheet(*followers, result))
    return result


# ---------------------------------------------------------------------------
# Personal export
# ---------------------------------------------------------------------------


def _parse_discovery_sheet(rows: list[list[Any]]) -> DiscoverySummary:
    """Parse DISCOVERY label/value rows.

    Real format (verified):
      A1: "Overall Performance"   B1: "2/22/2026 - 2/28/2026"
      A2: "Impressions"           B2: 1491
      A3: "Members reached"       B3: 875
    """
    summary = DiscoverySummary()
    for index, row in enumerate(rows):
        label = _cell(row, 0)
        value = _cell(row, 1)
        if label is None or value is None:
            continue
        key = _normalize_label(label)
        if index == 0 and key not in ("impressions", "impressionen"):
            summary.period = str(value)
        elif key in ("impressions", "impressionen"):
            summary.impressions = _parse_count(value)
        elif key in ("members reached", "erreichte mitglieder"):
            summary.members_reached = _parse_count(value)
    return summary


def _parse_engagement_sheet(
    sheet_name: str,
    rows: list[list[Any]],
    result: ParsedExport,
) -> list[DailyEngagementPoint]:
    """Parse ENGAGEMENT sheet: Date | Impressions | Engagements per day."""
    found = _find_header(rows, "post_date")
    if found is None:
        result.warnings.append(f"{sheet_name}: no 'Date' header row found.")
        return []
    header_index, columns = found

    points: list[DailyEngagementPoint] = []
    for offset, row in enumerate(rows[header_index + 1 :]):
        row_number = header_index + offset + 2
        if _is_blank(row):
            continue
        metric_date = _parse_date(_cell(row, columns["post_date"]))
        if metric_date is None:
            result.errors.append(
                f"{sheet_name} row {row_number}: unreadable date, row skipped."
            )
            continue
        points.append(
            DailyEngagementPoint(
                metric_date=metric_date,
                impressions=_parse_count(_cell(row, columns.get("impressions"))),
                engagements=_parse_count(_cell(row, columns.get("engagements"))),
            )
        )
    return points


def _parse_followers_sheet(
    sheet_name: str,
    rows: list[list[Any]],
    result: ParsedExport,
) -> list[FollowerPoint]:
    """Parse FOLLOWERS sheet.

    Real format (verified):
      Row 1: "Total followers on 2/28/2026:" | 1506
      Row 2: (empty)
      Row 3: "Date" | "New followers"
      Row 4+: date | new_followers_count
    """
    found = _find_header(rows, "post_date")
    if found is None:
        result.warnings.append(f"{sheet_name}: no 'Date' header row found.")
        return []
    header_index, columns = found
    followers_col = columns.get("new_followers", 1)

    points: list[FollowerPoint] = []
    for offset, row in enumerate(rows[header_index + 1 :]):
        row_number = header_index + offset + 2
        if _is_blank(row):
            continue
        metric_date = _parse_date(_cell(row, columns["post_date"]))
        if metric_date is None:
            result.errors.append(
                f"{sheet_name} row {row_number}: unreadable date, row skipped."
            )
            continue
        points.append(
            FollowerPoint(
                metric_date=metric_date,
                new_followers=_parse_count(_cell(row, followers_col)),
            )
        )

    if not points:
        result.warnings.append(f"{sheet_name}: no daily data rows found.")
    return points


def _parse_top_posts_sheet(
    sheet_name: str,
    rows: list[list[Any]],
    result: ParsedExport,
) -> list[ParsedPost]:
    """Parse TOP POSTS sheet into posts.

    Real format (verified): two side-by-side tables.
      Row 1: "Maximum of 50 posts available..."
      Row 2: (empty)
      Row 3: Post URL | Post publish date | Engagements | (gap) | Post URL | Post publish date | Impressions
      Row 4+: data rows

    Each table is located by its "Post URL" header; the metric column two
    to the right says whether it ranks by engagements or impressions. The
    two tables are merged by URL.
    """
    url_labels = _ALIAS_LOOKUP["post_url"]
    tables: list[tuple[int, str]] = []
    header_index = None

    for index, row in enumerate(rows[:HEADER_SCAN_ROWS]):
        url_columns = [
            i for i, v in enumerate(row)
            if v is not None and _normalize_label(v) in url_labels
        ]
        if not url_columns:
            continue
        header_index = index
        for col in url_columns:
            metric_label = _normalize_label(_cell(row, col + 2) or "")
            if metric_label in _ALIAS_LOOKUP["impressions"]:
                tables.append((col, "impressions"))
            else:
                tables.append((col, "engagements"))
        break

    if header_index is None:
        result.warnings.append(f"{sheet_name}: no 'Post URL' header row found.")
        return []

    merged: dict[str, dict[str, Any]] = {}
    for offset, row in enumerate(rows[header_index + 1 :]):
        row_number = header_index + offset + 2
        for col, metric in tables:
            raw_url = _cell(row, col)
            if raw_url is None:
                continue
            post_url = _parse_url(raw_url)
            if post_url is None:
                result.errors.append(
                    f"{sheet_name} row {row_number}: invalid post URL '{str(raw_url)[:60]}', skipped."
                )
                continue
            post_date = _parse_date(_cell(row, col + 1))
            if post_date is None:
                result.errors.append(
                    f"{sheet_name} row {row_number}: unreadable date for {post_url}, skipped."
                )
                continue

            record = merged.setdefault(
                post_url,
                {"post_date": post_date, "engagements": 0, "impressions": 0},
            )
            record[metric] = _parse_count(_cell(row, col + 2))

    return [
        ParsedPost.from_aggregate(
            post_url=url,
            post_date=record["post_date"],
            engagements=record["engagements"],
            impressions=record["impressions"],
        )
        for url, record in merged.items()
    ]


def _parse_personal(workbook: RawWorkbook) -> PersonalExport:
    result = PersonalExport()

    sheet = _get_sheet(workbook, SHEETS_DISCOVERY)
    if sheet:
        result.discovery = _parse_discovery_sheet(sheet[1])
        logger.info("Discovery summary: %s", result.discovery)
    else:
        result.warnings.append("Sheet 'DISCOVERY' not found.")

    sheet = _get_sheet(workbook, SHEETS_ENGAGEMENT)
    if sheet:
        result.daily_engagement.extend(_parse_engagement_sheet(*sheet, result))
    else:
        result.warnings.append("Sheet 'ENGAGEMENT' not found.")

    sheet = _get_sheet(workbook, SHEETS_TOP_POSTS)
    if sheet:
        result.posts.extend(_parse_top_posts_sheet(*sheet, result))
    else:
        result.warnings.append("Sheet 'TOP POSTS' not found.")

    sheet = _get_sheet(workbook, SHEETS_FOLLOWERS)
    if sheet:
        result.follower_points.extend(_parse_followers_sheet(*sheet, result))
    else:
        result.warnings.append("Sheet 'FOLLOWERS' not found.")

    return result


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def parse_export(workbook: RawWorkbook) -> ParsedExport:
    """Detect the export schema and normalize every relevant sheet.

    Args:
        workbook: Decoded sheets from read_workbook().

    Returns:
        CompanyExport or PersonalExport with posts, daily points, follower
        points and the non-fatal row errors and warnings.

    Raises:
        EmptyImportError: If the schema is not recognised or no post
            survives normalization.
    """
    export_type = detect_export_type(workbook)
    if export_type is None:
        raise EmptyImportError(
            "No LinkedIn post data found in the file. "
            "Please upload a LinkedIn content analytics export."
        )

    if export_type == ExportType.PERSONAL:
        result: ParsedExport = _parse_personal(workbook)
    else:
        result = _parse_company(workbook)

    logger.info(
        "Parsed %s export: %d posts, %d daily points, %d follower points, %d row errors",
        export_type.value,
        len(result.posts),
        len(getattr(result, "daily_engagement", [])),
        len(result.follower_points),
        len(result.errors),
    )

    if not result.posts:
        raise EmptyImportError("No valid posts found in the file.", result.errors)

    return result
