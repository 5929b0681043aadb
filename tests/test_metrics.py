"""Tests for dashboard metric computations."""

import math
from datetime import date, timedelta

import pytest

from creator_analytics.metrics import (
    AnalyticsSnapshot,
    DailySnapshot,
    PostSnapshot,
    RunSnapshot,
    build_dashboard,
    engagement_metrics,
    engagement_trend,
    filter_window,
    follower_trend,
    impression_metrics,
    metric_cards,
    post_frequency,
    post_performance,
    week_start,
)
from creator_analytics.models import ExportType
from creator_analytics.rates import percentage

TODAY = date(2025, 11, 30)


def _post(post_id: int, total: int, day: date = TODAY, **kwargs) -> PostSnapshot:
    return PostSnapshot(
        id=post_id,
        post_url=f"https://www.linkedin.com/feed/update/urn:li:activity:{7400000000000000000 + post_id}",
        post_date=day,
        engagement_total=total,
        **kwargs,
    )


def _posts(totals: list[int]) -> list[PostSnapshot]:
    return [_post(i + 1, total) for i, total in enumerate(totals)]


# ---------------------------------------------------------------------------
# percentage
# ---------------------------------------------------------------------------


class TestPercentage:
    def test_zero_denominator(self):
        assert percentage(5, 0) == 0.0

    def test_two_decimals(self):
        assert percentage(1, 3) == 33.33

    def test_rounds_half_up(self):
        assert percentage(1, 8) == 12.5
        assert percentage(2, 3) == 66.67


# ---------------------------------------------------------------------------
# filter_window
# ---------------------------------------------------------------------------


class TestFilterWindow:
    def _snapshot(self) -> AnalyticsSnapshot:
        return AnalyticsSnapshot(
            export_type=ExportType.COMPANY,
            posts=(
                _post(1, 10, TODAY - timedelta(days=3)),
                _post(2, 20, TODAY - timedelta(days=20)),
                _post(3, 30, TODAY - timedelta(days=60)),
                _post(4, 40, TODAY - timedelta(days=200)),
            ),
            daily=(
                DailySnapshot(TODAY - timedelta(days=7), new_followers=1),
                DailySnapshot(TODAY - timedelta(days=8), new_followers=2),
            ),
        )

    @pytest.mark.parametrize(
        "time_range, expected_ids",
        [("7d", [1]), ("30d", [1, 2]), ("90d", [1, 2, 3]), ("all", [1, 2, 3, 4])],
    )
    def test_ranges(self, time_range, expected_ids):
        window = filter_window(self._snapshot(), time_range, today=TODAY)
        assert [p.id for p in window.posts] == expected_ids

    def test_cutoff_day_is_inclusive(self):
        window = filter_window(self._snapshot(), "7d", today=TODAY)
        assert [d.new_followers for d in window.daily] == [1]

    def test_unknown_range_raises(self):
        with pytest.raises(ValueError, match="Unknown time range"):
            filter_window(self._snapshot(), "1y", today=TODAY)


# ---------------------------------------------------------------------------
# engagement_metrics
# ---------------------------------------------------------------------------


class TestEngagementMetrics:
    def test_empty(self):
        metrics = engagement_metrics([], ExportType.COMPANY)
        assert metrics.total_engagement == 0
        assert metrics.avg_per_post == 0
        assert metrics.total_posts == 0
        assert metrics.top_post_engagement == 0

    def test_company_breakdown(self):
        posts = [
            _post(1, 240, reactions=200, comments=30, shares=10),
            _post(2, 95, reactions=80, comments=12, shares=3),
        ]
        metrics = engagement_metrics(posts, ExportType.COMPANY)
        assert metrics.total_reactions == 280
        assert metrics.total_comments == 42
        assert metrics.total_shares == 13
        assert metrics.total_engagement == 335
        assert metrics.avg_per_post == 168
        assert metrics.total_posts == 2
        assert metrics.top_post_engagement == 240

    def test_personal_uses_aggregate(self):
        metrics = engagement_metrics(_posts([180, 155, 210]), ExportType.PERSONAL)
        assert metrics.total_reactions == 0
        assert metrics.total_comments == 0
        assert metrics.total_shares == 0
        assert metrics.total_engagement == 545
        assert metrics.avg_per_post == 182


# ---------------------------------------------------------------------------
# impression_metrics
# ---------------------------------------------------------------------------


class TestImpressionMetrics:
    def test_none_without_impressions(self):
        assert impression_metrics(_posts([10, 20])) is None
        assert impression_metrics([]) is None

    def test_rate_of_sums_vs_mean_of_rates(self):
        posts = [
            _post(1, 100, impressions=1000, clicks=100, engagement_rate=10.0),
            _post(2, 10, impressions=9000, clicks=0, engagement_rate=0.2),
        ]
        metrics = impression_metrics(posts)
        assert metrics.total_impressions == 10000
        assert metrics.total_clicks == 100
        # sum(clicks) / sum(impressions)
        assert metrics.avg_ctr == 1.0
        # mean of per-post rates
        assert metrics.avg_engagement_rate == pytest.approx(5.1)

    def test_posts_without_impressions_ignored(self):
        posts = [
            _post(1, 50, impressions=500, clicks=5, engagement_rate=10.0),
            _post(2, 50, impressions=0, clicks=0, engagement_rate=0.0),
        ]
        metrics = impression_metrics(posts)
        assert metrics.total_impressions == 500
        assert metrics.avg_engagement_rate == 10.0
        assert not math.isnan(metrics.avg_ctr)


# ---------------------------------------------------------------------------
# engagement_trend / post_frequency / follower_trend
# ---------------------------------------------------------------------------


class TestEngagementTrend:
    def test_company_buckets_posts_by_day(self):
        day1, day2 = date(2025, 11, 3), date(2025, 11, 10)
        snapshot = AnalyticsSnapshot(
            export_type=ExportType.COMPANY,
            posts=(
                _post(1, 15, day2, reactions=10, comments=5),
                _post(2, 240, day1, reactions=200, comments=30, shares=10),
                _post(3, 11, day2, reactions=10, comments=1),
            ),
        )
        trend = engagement_trend(snapshot)
        assert [t.date for t in trend] == [day1, day2]
        assert trend[1].reactions == 20
        assert trend[1].comments == 6
        assert trend[1].total == 26
        assert trend[1].post_count == 2
        assert trend[1].impressions is None

    def test_personal_passes_daily_rows_through(self):
        snapshot = AnalyticsSnapshot(
            export_type=ExportType.PERSONAL,
            posts=(_post(1, 999),),
            daily=(
                DailySnapshot(date(2025, 11, 2), impressions=300, engagements=9),
                DailySnapshot(date(2025, 11, 1), impressions=200, engagements=6),
            ),
        )
        trend = engagement_trend(snapshot)
        assert [t.date for t in trend] == [date(2025, 11, 1), date(2025, 11, 2)]
        assert trend[0].total == 6
        assert trend[0].impressions == 200
        assert trend[0].post_count == 0


class TestPostFrequency:
    def test_week_start_is_monday(self):
        assert week_start(date(2025, 11, 9)) == date(2025, 11, 3)
        assert week_start(date(2025, 11, 3)) == date(2025, 11, 3)

    def test_sunday_and_next_monday_in_distinct_weeks(self):
        posts = [
            _post(1, 1, date(2025, 11, 9)),
            _post(2, 1, date(2025, 11, 10)),
            _post(3, 1, date(2025, 11, 4)),
        ]
        frequency = post_frequency(posts)
        assert [(f.week, f.post_count) for f in frequency] == [
            (date(2025, 11, 3), 2),
            (date(2025, 11, 10), 1),
        ]

    def test_empty(self):
        assert post_frequency([]) == []


class TestFollowerTrend:
    def test_cumulative(self):
        daily = [
            DailySnapshot(date(2025, 11, 2), new_followers=3),
            DailySnapshot(date(2025, 11, 1), new_followers=2),
            DailySnapshot(date(2025, 11, 3), new_followers=0),
        ]
        trend = follower_trend(daily)
        assert [(t.new_followers, t.cumulative) for t in trend] == [(2, 2), (3, 5), (0, 5)]


# ---------------------------------------------------------------------------
# post_performance
# ---------------------------------------------------------------------------


class TestPostPerformance:
    def test_fewer_than_three_posts_all_top(self):
        report = post_performance(_posts([5, 90]))
        assert [p.engagement for p in report.top] == [90, 5]
        assert report.worst == []
        assert all(p.is_outlier is None for p in report.top)

    def test_small_sample_no_flag(self):
        # mean 24, population stddev ~18.4: 50 is below mean + 2 stddev
        report = post_performance(_posts([10, 50, 12]))
        assert report.top[0].engagement == 50
        assert report.top[0].is_outlier is None
        assert all(p.is_outlier is None for p in report.top + report.worst)

    def test_top_outlier_flagged(self):
        report = post_performance(_posts([10] * 10 + [100]))
        assert report.top[0].engagement == 100
        assert report.top[0].is_outlier == "top"
        assert all(p.is_outlier is None for p in report.top[1:])

    def test_bottom_outlier_flagged(self):
        report = post_performance(_posts([100] * 10 + [0]))
        assert report.worst[0].engagement == 0
        assert report.worst[0].is_outlier == "bottom"

    def test_identical_totals_all_flagged_top(self):
        report = post_performance(_posts([7, 7, 7, 7]))
        assert [p.is_outlier for p in report.top] == ["top"] * 4
        assert [p.is_outlier for p in report.worst] == ["top"] * 4

    def test_top_and_worst_limited_to_five(self):
        report = post_performance(_posts([1, 2, 3, 4, 5, 6, 7, 8]))
        assert [p.engagement for p in report.top] == [8, 7, 6, 5, 4]
        assert [p.engagement for p in report.worst] == [1, 2, 3, 4, 5]

    def test_carries_engagement_rate(self):
        posts = [_post(1, 10, engagement_rate=2.5), _post(2, 20), _post(3, 30)]
        report = post_performance(posts)
        assert report.top[-1].engagement_rate == 2.5


# ---------------------------------------------------------------------------
# metric_cards / build_dashboard
# ---------------------------------------------------------------------------


class TestBuildDashboard:
    def test_cards_per_export_type(self):
        assert "total_reactions" in metric_cards(ExportType.COMPANY)
        assert "total_reactions" not in metric_cards(ExportType.PERSONAL)
        assert "new_followers" in metric_cards(ExportType.PERSONAL)
        assert metric_cards(None) == metric_cards(ExportType.COMPANY)

    def test_empty_snapshot(self):
        dashboard = build_dashboard(AnalyticsSnapshot(), "30d", today=TODAY)
        assert dashboard.engagement.total_engagement == 0
        assert dashboard.impressions is None
        assert dashboard.new_followers == 0
        assert dashboard.trend == []
        assert dashboard.top_posts == []
        assert dashboard.worst_posts == []
        assert dashboard.last_run is None

    def test_window_applied(self):
        run = RunSnapshot(id=1, status="success", posts_found=2, posts_new=2, posts_updated=0)
        snapshot = AnalyticsSnapshot(
            export_type=ExportType.PERSONAL,
            posts=(
                _post(1, 100, TODAY - timedelta(days=2), impressions=1000, engagement_rate=10.0),
                _post(2, 500, TODAY - timedelta(days=45), impressions=1000, engagement_rate=50.0),
            ),
            daily=(
                DailySnapshot(TODAY - timedelta(days=1), impressions=50, engagements=4, new_followers=3),
                DailySnapshot(TODAY - timedelta(days=40), impressions=60, engagements=5, new_followers=9),
            ),
            last_run=run,
        )
        dashboard = build_dashboard(snapshot, "30d", today=TODAY)
        assert dashboard.time_range == "30d"
        assert dashboard.export_type == ExportType.PERSONAL
        assert dashboard.engagement.total_engagement == 100
        assert dashboard.impressions.total_impressions == 1000
        assert dashboard.new_followers == 3
        assert [t.total for t in dashboard.trend] == [4]
        assert [f.cumulative for f in dashboard.followers] == [3]
        assert dashboard.last_run == run
