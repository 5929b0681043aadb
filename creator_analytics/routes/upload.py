"""File import routes: POST handler and import run history."""

import logging
from pathlib import Path
from typing import Any

from fastapi import APIRouter, Depends, File, Query, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from creator_analytics.config import settings
from creator_analytics.database import get_session
from creator_analytics.errors import (
    EmptyImportError,
    IngestError,
    StorageUnavailableError,
    UnsupportedFormatError,
)
from creator_analytics.importer import ImportSummary, import_file
from creator_analytics.models import ScrapeRun
from creator_analytics.routes.api import get_user_id
from creator_analytics.storage import RowStore

# Chunk size for streaming reads (1 MiB)
_CHUNK_SIZE = 1024 * 1024

logger = logging.getLogger(__name__)

router = APIRouter()


def _error_response(status_code: int, errors: list[str]) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"errors": errors})


def _summary_payload(summary: ImportSummary) -> dict[str, Any]:
    return jsonable_encoder(
        {
            "run_id": summary.run_id,
            "status": summary.status,
            "export_type": summary.export_type.value,
            "file_name": summary.file_name,
            "posts_found": summary.posts_found,
            "posts_new": summary.posts_new,
            "posts_updated": summary.posts_updated,
            "daily_rows": summary.daily_rows,
            "errors": summary.errors,
            "warnings": summary.warnings,
            "discovery": summary.discovery,
        }
    )


@router.post("/api/import")
async def handle_import(
    file: UploadFile = File(...),
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_session),
):
    """Import a LinkedIn analytics export for the calling user.

    Returns the run summary with 200 when at least one post was stored,
    422 with the summary when none was, and a JSON error list otherwise.
    Unexpected failures are logged with a traceback and answered with 500.
    """
    original_filename = Path(file.filename or "upload").name
    max_bytes = settings.max_upload_bytes

    # Enforce the size limit while reading instead of after buffering
    chunks: list[bytes] = []
    total_read = 0
    while True:
        chunk = file.file.read(_CHUNK_SIZE)
        if not chunk:
            break
        total_read += len(chunk)
        if total_read > max_bytes:
            logger.warning(
                "Upload '%s' rejected: exceeds %d MB limit",
                original_filename,
                settings.max_upload_size_mb,
            )
            return _error_response(
                400, [f"File exceeds the {settings.max_upload_size_mb} MB size limit."]
            )
        chunks.append(chunk)
    data = b"".join(chunks)

    try:
        summary = import_file(db, data, original_filename, user_id, file.content_type)

    except UnsupportedFormatError as exc:
        logger.info("Unsupported upload '%s': %s", original_filename, exc)
        return _error_response(415, [str(exc)])

    except EmptyImportError as exc:
        logger.info("Nothing to import from '%s': %s", original_filename, exc)
        return _error_response(422, [str(exc), *exc.errors])

    except StorageUnavailableError as exc:
        logger.error("Storage unavailable during import of '%s': %s", original_filename, exc)
        return _error_response(503, ["Storage is unavailable. Please try again later."])

    except IngestError as exc:
        logger.warning("Ingest error for '%s': %s", original_filename, exc)
        return _error_response(400, [str(exc)])

    except Exception as exc:
        logger.exception("Unexpected error during import of '%s'", original_filename)
        return _error_response(500, [f"Unexpected error: {exc}"])

    payload = _summary_payload(summary)
    if summary.status != "success":
        return JSONResponse(status_code=422, content=payload)
    return payload


@router.get("/api/import/runs")
async def list_import_runs(
    limit: int = Query(20, ge=1, le=100),
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_session),
) -> dict[str, Any]:
    """Return the user's most recent import runs, newest first."""
    runs = RowStore(db).select_range(
        ScrapeRun, "id", descending=True, limit=limit, user_id=user_id
    )
    return {
        "runs": [
            {
                "id": r.id,
                "status": r.status,
                "export_type": r.export_type,
                "file_name": r.file_name,
                "posts_found": r.posts_found,
                "posts_new": r.posts_new,
                "posts_updated": r.posts_updated,
                "daily_rows": r.daily_rows,
                "error_message": r.error_message,
                "started_at": r.started_at.isoformat() if r.started_at else None,
                "completed_at": r.completed_at.isoformat() if r.completed_at else None,
            }
            for r in runs
        ]
    }
