import re
import time
from datetime import datetime, timezone

import psycopg2
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api import db
from api.config import (
    API_TITLE,
    API_VERSION,
    CORS_ALLOW_ORIGINS,
    EVENT_LOG_RESET_ON_STARTUP,
    HEALTH_TIMEOUT_SEC,
)
from api.db import get_conn
from api.events import log_api_event, log_search_event, reset_event_log
from api.models import (
    ChapterDetailResponse,
    ChaptersResponse,
    ChapterVersesResponse,
    SearchResponse,
    VerseItem,
)
from api.store import (
    SEARCH_COLUMNS,
    NotFound,
    StoreError,
    StoreUnavailable,
    clamp_limit,
    get_chapter_with_verses,
    get_verse,
    list_chapters,
    ping,
    random_verse,
    search_verses,
)

_INTEGER_RE = re.compile(r"-?[0-9]+")

app = FastAPI(title=API_TITLE, version=API_VERSION)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET"],
    allow_headers=["*"],
)


@app.on_event("startup")
def _startup() -> None:
    if EVENT_LOG_RESET_ON_STARTUP:
        reset_event_log("startup")
    db.init_pool()


@app.on_event("shutdown")
def _shutdown() -> None:
    db.close_pool()


@app.exception_handler(HTTPException)
def handle_http_exception(_request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": "http_error", "message": str(exc.detail)}},
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
def handle_validation_exception(_request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": "validation_error",
                "message": "invalid request",
                "details": exc.errors(),
            }
        },
    )


@app.exception_handler(StoreUnavailable)
def handle_unavailable_exception(request: Request, exc: StoreUnavailable):
    log_api_event("api_unavailable", {"path": request.url.path, "error": str(exc)})
    return JSONResponse(
        status_code=503,
        content={"error": {"code": "service_unavailable", "message": "database unavailable"}},
    )


@app.exception_handler(StoreError)
def handle_store_exception(request: Request, exc: StoreError):
    log_api_event("api_error", {"path": request.url.path, "error": exc.__class__.__name__})
    return JSONResponse(
        status_code=500,
        content={"error": {"code": "internal_error", "message": "internal server error"}},
    )


def _parse_positive_int(value: str, label: str) -> int:
    if not value or not (value.isascii() and value.isdigit()):
        raise HTTPException(status_code=400, detail=f"invalid {label} number")
    n = int(value)
    if n <= 0:
        raise HTTPException(status_code=400, detail=f"invalid {label} number")
    return n


@app.get("/healthz")
def health():
    try:
        with db.connection(timeout=HEALTH_TIMEOUT_SEC) as conn:
            ping(conn, HEALTH_TIMEOUT_SEC)
    except (StoreError, RuntimeError, psycopg2.Error) as exc:
        log_api_event("health_failed", {"error": exc.__class__.__name__})
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "error": str(exc)},
        )
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/api/v1/chapters", response_model=ChaptersResponse)
def list_chapters_route(conn=Depends(get_conn)):
    start = time.perf_counter()
    chapters = list_chapters(conn)
    elapsed_ms = int((time.perf_counter() - start) * 1000)
    log_api_event("db_chapters", {"count": len(chapters), "elapsed_ms": elapsed_ms})
    return {"chapters": chapters}


@app.get("/api/v1/chapters/{chapter}", response_model=ChapterDetailResponse)
def get_chapter(chapter: str, conn=Depends(get_conn)):
    chapter_id = _parse_positive_int(chapter, "chapter")
    try:
        chapter_row, verses = get_chapter_with_verses(conn, chapter_id)
    except NotFound:
        log_api_event("db_chapter_not_found", {"chapter": chapter_id})
        raise HTTPException(status_code=404, detail="not found")
    log_api_event("db_chapter", {"chapter": chapter_id, "verses": len(verses)})
    return {"chapter": chapter_row, "verses": verses}


@app.get("/api/v1/chapters/{chapter}/verses", response_model=ChapterVersesResponse)
def list_chapter_verses(chapter: str, conn=Depends(get_conn)):
    chapter_id = _parse_positive_int(chapter, "chapter")
    try:
        _, verses = get_chapter_with_verses(conn, chapter_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="not found")
    return {"chapter": chapter_id, "verses": verses}


@app.get("/api/v1/chapters/{chapter}/verses/{verse}", response_model=VerseItem)
def get_verse_route(chapter: str, verse: str, conn=Depends(get_conn)):
    chapter_id = _parse_positive_int(chapter, "chapter")
    verse_number = _parse_positive_int(verse, "verse")
    try:
        result = get_verse(conn, chapter_id, verse_number)
    except NotFound:
        log_api_event("db_verse_not_found", {"chapter": chapter_id, "verse": verse_number})
        raise HTTPException(status_code=404, detail="not found")
    log_api_event("db_verse", {"chapter": chapter_id, "verse": verse_number})
    return result


@app.get("/api/v1/search", response_model=SearchResponse)
def search(
    query: str = Query(""),
    lang: str = Query("en"),
    limit: str = Query("20"),
    conn=Depends(get_conn),
):
    if len(query) < 2:
        raise HTTPException(status_code=400, detail="query must be at least 2 characters")
    if lang not in SEARCH_COLUMNS:
        raise HTTPException(status_code=400, detail="lang must be 'en' or 'hi'")
    if not _INTEGER_RE.fullmatch(limit):
        raise HTTPException(status_code=400, detail="limit must be an integer")
    limit_n = int(limit)

    start = time.perf_counter()
    results = search_verses(conn, query, lang, limit_n)
    elapsed_ms = int((time.perf_counter() - start) * 1000)
    log_search_event(
        "api_search",
        {
            "lang": lang,
            "q_len": len(query),
            "limit": clamp_limit(limit_n),
            "total": len(results),
            "elapsed_ms": elapsed_ms,
        },
    )
    if not results:
        log_search_event("search_zero", {"lang": lang, "q": query})
    return {"results": results}


@app.get("/api/v1/random", response_model=VerseItem)
def random_verse_route(conn=Depends(get_conn)):
    try:
        verse = random_verse(conn)
    except NotFound:
        raise HTTPException(status_code=404, detail="not found")
    log_api_event("db_random", {"chapter": verse["chapter_id"], "verse": verse["verse_number"]})
    return verse
