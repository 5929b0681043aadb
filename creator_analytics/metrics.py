"""Dashboard metrics derived from stored posts and daily rows.

Every function here is a pure computation over an AnalyticsSnapshot (or
the posts inside one). Nothing reads or writes storage, and nothing raises
on empty input: missing data degrades to zeros, empty lists, or None.

Two rate conventions are used on purpose and must not be merged:
  avg_ctr              -> rate of sums: sum(clicks) / sum(impressions)
  avg_engagement_rate  -> mean of each post's own engagement rate
"""

import statistics
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta

from creator_analytics.models import TIME_RANGE_DAYS, ExportType
from creator_analytics.rates import percentage, round_half_up


OUTLIER_STDDEVS = 2
MIN_POSTS_FOR_OUTLIERS = 3
PERFORMERS_LIMIT = 5

METRIC_CARDS: dict[ExportType, tuple[str, ...]] = {
    ExportType.COMPANY: (
        "total_engagement",
        "total_reactions",
        "total_comments",
        "total_shares",
        "avg_per_post",
        "top_post_engagement",
    ),
    ExportType.PERSONAL: (
        "total_engagement",
        "total_impressions",
        "avg_per_post",
        "top_post_engagement",
        "new_followers",
    ),
}


# ---------------------------------------------------------------------------
# Snapshot values
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PostSnapshot:
    id: int
    post_url: str
    post_date: date
    engagement_total: int
    reactions: int = 0
    comments: int = 0
    shares: int = 0
    impressions: int = 0
    clicks: int = 0
    ctr: float | None = None
    engagement_rate: float = 0.0
    media_type: str = "text"
    video_views: int | None = None
    content: str | None = None


@dataclass(frozen=True)
class DailySnapshot:
    metric_date: date
    impressions: int = 0
    engagements: int = 0
    new_followers: int = 0


@dataclass(frozen=True)
class RunSnapshot:
    id: int
    status: str
    posts_found: int
    posts_new: int
    posts_updated: int
    file_name: str | None = None
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass(frozen=True)
class AnalyticsSnapshot:
    """Everything the dashboard knows about one user at a point in time."""

    export_type: ExportType | None = None
    posts: tuple[PostSnapshot, ...] = ()
    daily: tuple[DailySnapshot, ...] = ()
    last_run: RunSnapshot | None = None


# ---------------------------------------------------------------------------
# Derived views
# ---------------------------------------------------------------------------


@dataclass
class EngagementMetrics:
    total_reactions: int = 0
    total_comments: int = 0
    total_shares: int = 0
    total_engagement: int = 0
    avg_per_post: int = 0
    total_posts: int = 0
    top_post_engagement: int = 0


@dataclass
class ImpressionMetrics:
    total_impressions: int
    total_clicks: int
    avg_ctr: float
    avg_engagement_rate: float


@dataclass
class EngagementTrend:
    date: date
    reactions: int = 0
    comments: int = 0
    shares: int = 0
    total: int = 0
    post_count: int = 0
    impressions: int | None = None


@dataclass
class PostFrequency:
    week: date
    post_count: int


@dataclass
class FollowerTrend:
    date: date
    new_followers: int
    cumulative: int


@dataclass
class PostPerformance:
    post: PostSnapshot
    engagement: int
    engagement_rate: float
    # "top", "bottom" or None
    is_outlier: str | None = None


@dataclass
class PerformanceReport:
    top: list[PostPerformance] = field(default_factory=list)
    worst: list[PostPerformance] = field(default_factory=list)


@dataclass
class DashboardMetrics:
    time_range: str
    export_type: ExportType | None
    cards: tuple[str, ...]
    engagement: EngagementMetrics
    impressions: ImpressionMetrics | None
    new_followers: int
    trend: list[EngagementTrend]
    frequency: list[PostFrequency]
    followers: list[FollowerTrend]
    top_posts: list[PostPerformance]
    worst_posts: list[PostPerformance]
    last_run: RunSnapshot | None


def filter_window(
    snapshot: AnalyticsSnapshot,
    time_range: str = "30d",
    today: date | None = None,
) -> AnalyticsSnapshot:
    """Return a snapshot holding only posts and daily rows inside the window.

    Raises:
        ValueError: If ``time_range`` is not one of TIME_RANGE_DAYS.
    """
    if time_range not in TIME_RANGE_DAYS:
        raise ValueError(
            f"Unknown time range '{time_range}'. Expected one of {', '.join(TIME_RANGE_DAYS)}"
        )
    days = TIME_RANGE_DAYS[time_range]
    if days is None:
        return snapshot

    cutoff = (today or date.today()) - timedelta(days=days)
    return replace(
        snapshot,
        posts=tuple(p for p in snapshot.posts if p.post_date >= cutoff),
        daily=tuple(d for d in snapshot.daily if d.metric_date >= cutoff),
    )


def engagement_metrics(
    posts: tuple[PostSnapshot, ...] | list[PostSnapshot],
    export_type: ExportType | None,
) -> EngagementMetrics:
    """Totals and per-post average of engagement.

    Personal exports only carry an aggregate engagement figure per post, so
    the reaction/comment/share totals stay at zero for them.
    """
    if not posts:
        return EngagementMetrics()

    if export_type == ExportType.PERSONAL:
        reactions = comments = shares = 0
        total = sum(p.engagement_total for p in posts)
    else:
        reactions = sum(p.reactions for p in posts)
        comments = sum(p.comments for p in posts)
        shares = sum(p.shares for p in posts)
        total = reactions + comments + shares

    return EngagementMetrics(
        total_reactions=reactions,
        total_comments=comments,
        total_shares=shares,
        total_engagement=total,
        avg_per_post=int(round_half_up(total / len(posts))),
        total_posts=len(posts),
        top_post_engagement=max(p.engagement_total for p in posts),
    )


def impression_metrics(
    posts: tuple[PostSnapshot, ...] | list[PostSnapshot],
) -> ImpressionMetrics | None:
    """Impression and click-through figures over posts that have impressions.

    Returns None when no post has impressions, so the caller can hide the
    impressions panel instead of showing zeros.
    """
    with_impressions = [p for p in posts if p.impressions > 0]
    if not with_impressions:
        return None

    total_impressions = sum(p.impressions for p in with_impressions)
    total_clicks = sum(p.clicks for p in with_impressions)
    avg_rate = statistics.fmean(p.engagement_rate or 0.0 for p in with_impressions)

    return ImpressionMetrics(
        total_impressions=total_impressions,
        total_clicks=total_clicks,
        avg_ctr=percentage(total_clicks, total_impressions),
        avg_engagement_rate=round_half_up(avg_rate, 2),
    )


def engagement_trend(snapshot: AnalyticsSnapshot) -> list[EngagementTrend]:
    """Daily engagement series, ascending by date.

    Personal exports come with a native daily series, which is passed
    through. Company exports have none, so posts are bucketed by the day
    they were published.
    """
    if snapshot.export_type == ExportType.PERSONAL:
        return [
            EngagementTrend(
                date=row.metric_date,
                total=row.engagements,
                impressions=row.impressions,
            )
            for row in sorted(snapshot.daily, key=lambda r: r.metric_date)
        ]

    by_day: dict[date, EngagementTrend] = {}
    for post in snapshot.posts:
        bucket = by_day.get(post.post_date)
        if bucket is None:
            bucket = by_day[post.post_date] = EngagementTrend(date=post.post_date)
        bucket.reactions += post.reactions
        bucket.comments += post.comments
        bucket.shares += post.shares
        bucket.total += post.engagement_total
        bucket.post_count += 1

    return [by_day[day] for day in sorted(by_day)]


def week_start(day: date) -> date:
    """Monday of the ISO week containing ``day``."""
    return day - timedelta(days=day.weekday())


def post_frequency(
    posts: tuple[PostSnapshot, ...] | list[PostSnapshot],
) -> list[PostFrequency]:
    """Number of posts per ISO week, keyed by the week's Monday."""
    counts = Counter(week_start(p.post_date) for p in posts)
    return [PostFrequency(week=week, post_count=counts[week]) for week in sorted(counts)]


def follower_trend(
    daily: tuple[DailySnapshot, ...] | list[DailySnapshot],
) -> list[FollowerTrend]:
    """New followers per day with a running total over the window."""
    trend: list[FollowerTrend] = []
    cumulative = 0
    for row in sorted(daily, key=lambda r: r.metric_date):
        cumulative += row.new_followers
        trend.append(
            FollowerTrend(
                date=row.metric_date,
                new_followers=row.new_followers,
                cumulative=cumulative,
            )
        )
    return trend


def post_performance(
    posts: tuple[PostSnapshot, ...] | list[PostSnapshot],
) -> PerformanceReport:
    """Top and worst performers, flagging statistical outliers.

    With fewer than MIN_POSTS_FOR_OUTLIERS posts the sample is too small to
    classify: every post is returned as a top performer and none as worst.

    Otherwise a post is flagged "top" when its engagement is at least
    mean + 2 population standard deviations, "bottom" when at most
    mean - 2 stddev. When every total is equal the bounds collapse onto
    the mean, so each post is flagged "top". The flag is informational:
    the top list is always the PERFORMERS_LIMIT highest-engagement posts
    and the worst list the PERFORMERS_LIMIT lowest (lowest first).
    """
    ranked = sorted(posts, key=lambda p: p.engagement_total, reverse=True)

    if len(ranked) < MIN_POSTS_FOR_OUTLIERS:
        return PerformanceReport(
            top=[_performance(p, None) for p in ranked],
            worst=[],
        )

    totals = [p.engagement_total for p in ranked]
    mean = statistics.fmean(totals)
    stddev = statistics.pstdev(totals)
    upper = mean + OUTLIER_STDDEVS * stddev
    lower = mean - OUTLIER_STDDEVS * stddev

    def classify(value: int) -> str | None:
        if value >= upper:
            return "top"
        if value <= lower:
            return "bottom"
        return None

    rated = [_performance(p, classify(p.engagement_total)) for p in ranked]
    return PerformanceReport(
        top=rated[:PERFORMERS_LIMIT],
        worst=list(reversed(rated[-PERFORMERS_LIMIT:])),
    )


def _performance(post: PostSnapshot, flag: str | None) -> PostPerformance:
    return PostPerformance(
        post=post,
        engagement=post.engagement_total,
        engagement_rate=post.engagement_rate or 0.0,
        is_outlier=flag,
    )


def metric_cards(export_type: ExportType | None) -> tuple[str, ...]:
    """Card keys shown on the dashboard for an export type."""
    return METRIC_CARDS[export_type or ExportType.COMPANY]


def build_dashboard(
    snapshot: AnalyticsSnapshot,
    time_range: str = "30d",
    today: date | None = None,
) -> DashboardMetrics:
    """Compute every dashboard view for one time window."""
    window = filter_window(snapshot, time_range, today)
    performance = post_performance(window.posts)

    return DashboardMetrics(
        time_range=time_range,
        export_type=snapshot.export_type,
        cards=metric_cards(snapshot.export_type),
        engagement=engagement_metrics(window.posts, snapshot.export_type),
        impressions=impression_metrics(window.posts),
        new_followers=sum(row.new_followers for row in window.daily),
        trend=engagement_trend(window),
        frequency=post_frequency(window.posts),
        followers=follower_trend(window.daily),
        top_posts=performance.top,
        worst_posts=performance.worst,
        last_run=snapshot.last_run,
    )
