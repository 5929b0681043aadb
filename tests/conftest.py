"""Pytest configuration and shared fixtures."""

import io
from datetime import date, datetime, timedelta
from typing import Any

import openpyxl
import pytest
import xlwt
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from creator_analytics.database import get_session
from creator_analytics.models import Base

# ---------------------------------------------------------------------------
# In-memory database fixtures
#
# We use a single shared SQLite connection for the entire test function so that
# data written by test fixtures and data read by the FastAPI route handlers
# both see the same state. SQLite :memory: databases are per-connection and
# data does not propagate across separate connections.
# ---------------------------------------------------------------------------


@pytest.fixture(scope="function")
def test_engine():
    """Create a fresh in-memory SQLite engine per test function."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _enable_fk(dbapi_conn, _):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def test_session(test_engine):
    """Yield a SQLAlchemy session backed by the in-memory database."""
    TestSession = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    session = TestSession()
    try:
        yield session
    finally:
        session.close()


# ---------------------------------------------------------------------------
# FastAPI test client
# ---------------------------------------------------------------------------


@pytest.fixture(scope="function")
def client(test_engine, tmp_path):
    """Return a FastAPI TestClient with an isolated in-memory database.

    Route handler sessions share one SQLite connection via test_engine, so
    rows committed by one request are visible to the next.
    """
    from creator_analytics.main import app
    from creator_analytics import config as app_config
    from creator_analytics import database as app_db

    shared_connection = test_engine.connect()
    TestSession = sessionmaker(
        autocommit=False, autoflush=False, bind=shared_connection
    )

    def override_get_session():
        session = TestSession()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_session] = override_get_session

    # Mutate the settings singleton in place so every module that imported
    # it sees the tmp data_dir.
    original_data_dir = app_config.settings.__dict__["data_dir"]
    app_config.settings.__dict__["data_dir"] = tmp_path

    # Patch the global engine used by init_db() so startup uses the test engine
    original_engine = app_db.engine
    original_session_local = app_db.SessionLocal
    app_db.engine = test_engine
    app_db.SessionLocal = TestSession

    with TestClient(app, raise_server_exceptions=True) as c:
        yield c

    app.dependency_overrides.clear()
    shared_connection.close()
    app_db.engine = original_engine
    app_db.SessionLocal = original_session_local
    app_config.settings.__dict__["data_dir"] = original_data_dir


# ---------------------------------------------------------------------------
# Synthetic exports
# ---------------------------------------------------------------------------

PERSONAL_BASE_DATE = date(2025, 11, 1)

# (activity id, publish date, engagements, impressions)
PERSONAL_POSTS = [
    ("7400000000000000001", PERSONAL_BASE_DATE, 180, 3200),
    ("7400000000000000002", PERSONAL_BASE_DATE + timedelta(days=7), 155, 2800),
    ("7400000000000000003", PERSONAL_BASE_DATE + timedelta(days=14), 210, 4500),
    ("7400000000000000004", PERSONAL_BASE_DATE + timedelta(days=21), 280, 5100),
    ("7400000000000000005", PERSONAL_BASE_DATE + timedelta(days=28), 120, 2200),
]

COMPANY_HEADER = [
    "Post title",
    "Post link",
    "Content type",
    "Created date",
    "Impressions",
    "Clicks",
    "Click through rate (CTR)",
    "Likes",
    "Comments",
    "Reposts",
    "Video views",
]

COMPANY_ROWS = [
    [
        "Launching our new product line",
        "https://www.linkedin.com/feed/update/urn:li:activity:7400000000000000101",
        "Video", "11/03/2025", 5000, 120, 0.024, 200, 30, 10, 1500,
    ],
    [
        "We are hiring engineers",
        "https://www.linkedin.com/feed/update/urn:li:activity:7400000000000000102",
        "Image", "11/05/2025", 2000, 40, 0.02, 80, 12, 3, None,
    ],
    [
        "Quarterly report",
        "https://www.linkedin.com/feed/update/urn:li:activity:7400000000000000103",
        "Document", "11/10/2025", 1500, 15, None, 40, 5, 2, None,
    ],
    [
        "Team offsite recap",
        "https://www.linkedin.com/feed/update/urn:li:activity:7400000000000000104",
        "Text", "11/10/2025", 0, 0, None, 10, 1, 0, None,
    ],
]


def post_url(activity_id: str) -> str:
    return f"https://www.linkedin.com/feed/update/urn:li:activity:{activity_id}"


def xlsx_bytes(sheets: dict[str, list[list[Any]]]) -> bytes:
    """Build an .xlsx file from a mapping of sheet name to rows."""
    wb = openpyxl.Workbook()
    wb.remove(wb.active)
    for name, rows in sheets.items():
        ws = wb.create_sheet(name)
        for row in rows:
            ws.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def xls_bytes(sheets: dict[str, list[list[Any]]]) -> bytes:
    """Build a legacy BIFF .xls file. None cells are left empty."""
    book = xlwt.Workbook()
    date_style = xlwt.easyxf(num_format_str="YYYY-MM-DD HH:MM")
    for name, rows in sheets.items():
        ws = book.add_sheet(name)
        for r, row in enumerate(rows):
            for c, value in enumerate(row):
                if value is None:
                    continue
                if isinstance(value, (date, datetime)):
                    ws.write(r, c, value, date_style)
                else:
                    ws.write(r, c, value)
    buffer = io.BytesIO()
    book.save(buffer)
    return buffer.getvalue()


def build_personal_sheets(
    days: int = 30,
    posts: list[tuple[str, date, int, int]] | None = None,
) -> dict[str, list[list[Any]]]:
    """Sheets of a personal creator export.

    Mirrors the real LinkedIn export format (verified Feb 2026):
    - DISCOVERY: summary metrics (label/value pairs)
    - ENGAGEMENT: daily totals (Date | Impressions | Engagements)
    - TOP POSTS: two side-by-side tables (Engagements A-C, Impressions E-G)
    - FOLLOWERS: total at top, then Date | New followers (header at row 3)
    """
    posts = PERSONAL_POSTS if posts is None else posts
    end_date = PERSONAL_BASE_DATE + timedelta(days=days - 1)

    discovery = [
        [
            "Overall Performance",
            f"{PERSONAL_BASE_DATE:%m/%d/%Y} - {end_date:%m/%d/%Y}",
        ],
        ["Impressions", 15800],
        ["Members reached", 9200],
    ]

    engagement = [["Date", "Impressions", "Engagements"]]
    for i in range(days):
        d = PERSONAL_BASE_DATE + timedelta(days=i)
        impressions = 200 + (i % 7) * 50
        engagement.append([d.strftime("%m/%d/%Y"), impressions, int(impressions * 0.03)])

    by_engagements = sorted(posts, key=lambda p: p[2], reverse=True)
    by_impressions = sorted(posts, key=lambda p: p[3], reverse=True)
    top_posts = [
        ["Maximum of 50 posts available to include in this list"],
        [None],
        [
            "Post URL", "Post publish date", "Engagements", None,
            "Post URL", "Post publish date", "Impressions",
        ],
    ]
    for left, right in zip(by_engagements, by_impressions):
        top_posts.append(
            [
                post_url(left[0]), left[1].strftime("%m/%d/%Y"), left[2], None,
                post_url(right[0]), right[1].strftime("%m/%d/%Y"), right[3],
            ]
        )

    followers = [
        [f"Total followers on {end_date:%m/%d/%Y}:", 520],
        [None],
        ["Date", "New followers"],
    ]
    for i in range(days):
        d = PERSONAL_BASE_DATE + timedelta(days=i)
        followers.append([d.strftime("%m/%d/%Y"), i % 5 + 1])

    return {
        "DISCOVERY": discovery,
        "ENGAGEMENT": engagement,
        "TOP POSTS": top_posts,
        "FOLLOWERS": followers,
    }


def build_company_sheets(rows: list[list[Any]] | None = None) -> dict[str, list[list[Any]]]:
    """Sheets of a company page "All posts" export: description row, then table."""
    rows = COMPANY_ROWS if rows is None else rows
    return {
        "All posts": [
            ["All posts analytics for Acme Corp"],
            list(COMPANY_HEADER),
            *[list(r) for r in rows],
        ]
    }


@pytest.fixture
def make_xlsx():
    """Return the xlsx builder so tests can assemble ad-hoc workbooks."""
    return xlsx_bytes


@pytest.fixture
def personal_sheets() -> dict[str, list[list[Any]]]:
    return build_personal_sheets()


@pytest.fixture
def company_sheets() -> dict[str, list[list[Any]]]:
    return build_company_sheets()


@pytest.fixture
def personal_xlsx_bytes() -> bytes:
    """Raw bytes of a synthetic personal export .xlsx."""
    return xlsx_bytes(build_personal_sheets())


@pytest.fixture
def company_xlsx_bytes() -> bytes:
    """Raw bytes of a synthetic company export .xlsx."""
    return xlsx_bytes(build_company_sheets())


@pytest.fixture
def make_xls():
    """Return the .xls builder for ad-hoc legacy workbooks."""
    return xls_bytes


@pytest.fixture
def company_xls_bytes() -> bytes:
    """The company export saved in the legacy .xls format."""
    return xls_bytes(build_company_sheets())


@pytest.fixture
def company_csv_bytes() -> bytes:
    """The company table as a comma-separated CSV download (header first)."""
    lines = [",".join(COMPANY_HEADER)]
    for row in COMPANY_ROWS:
        lines.append(",".join("" if v is None else str(v) for v in row))
    return ("\r\n".join(lines) + "\r\n").encode("utf-8")


@pytest.fixture
def make_personal_xlsx():
    """Return a builder for personal exports with custom days or posts."""

    def _build(**kwargs) -> bytes:
        return xlsx_bytes(build_personal_sheets(**kwargs))

    return _build


@pytest.fixture
def make_company_xlsx():
    """Return a builder for company exports with custom rows."""

    def _build(rows: list[list[Any]] | None = None) -> bytes:
        return xlsx_bytes(build_company_sheets(rows))

    return _build


@pytest.fixture
def company_rows() -> list[list[Any]]:
    """Mutable copy of the company export data rows."""
    return [list(r) for r in COMPANY_ROWS]
