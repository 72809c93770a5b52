from __future__ import annotations

import logging
import time
import traceback
from pathlib import Path
from typing import Any, Dict, Optional, Union

from fastapi import Depends, FastAPI, Form, HTTPException, Query, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from starlette.exceptions import HTTPException as StarletteHTTPException

from catalog import Book, BookForm, CatalogStore, Saved, fits_sqlite_integer
from settings import get_settings
from views import Redirect, Render, list_page, search_page

BASE_DIR = Path(__file__).resolve().parent
TEMPLATES_DIR = BASE_DIR / "templates"
STATIC_DIR = BASE_DIR / "static"

logger = logging.getLogger("book_catalog.server")


# -----------------------------------------------------------------------------
# Application setup
# -----------------------------------------------------------------------------

app = FastAPI(title="Book Catalog", version="0.1.0")
app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


def get_store() -> CatalogStore:
    if not hasattr(get_store, "_instance"):
        get_store._instance = CatalogStore()
    return get_store._instance  # type: ignore[attr-defined]


@app.on_event("shutdown")
def _shutdown() -> None:
    store = getattr(get_store, "_instance", None)
    if isinstance(store, CatalogStore):
        store.close()


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed = (time.perf_counter() - started) * 1000
    logger.info(
        "%s %s %s %.1f ms",
        request.method,
        request.url.path,
        response.status_code,
        elapsed,
    )
    return response


# -----------------------------------------------------------------------------
# Helper utilities
# -----------------------------------------------------------------------------


def _render(
    request: Request,
    template: str,
    context: Optional[Dict[str, Any]] = None,
    status_code: int = status.HTTP_200_OK,
) -> HTMLResponse:
    return templates.TemplateResponse(request, template, context or {}, status_code=status_code)


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)


def _respond(request: Request, outcome: Union[Redirect, Render]) -> Response:
    if isinstance(outcome, Redirect):
        return _redirect(outcome.url)
    return _render(request, outcome.template, outcome.context)


def _not_found(request: Request) -> HTMLResponse:
    return _render(request, "page-not-found.html", status_code=status.HTTP_404_NOT_FOUND)


def _parse_id(book_id: str) -> Optional[int]:
    if not (book_id.isascii() and book_id.isdigit()):
        return None
    key = int(book_id)
    return key if fits_sqlite_integer(key) else None


def _book_form(
    title: Optional[str] = Form(None),
    author: Optional[str] = Form(None),
    genre: Optional[str] = Form(None),
    year: Optional[str] = Form(None),
) -> BookForm:
    return BookForm(title=title, author=author, genre=genre, year=year)


def _error_details(exc: Exception) -> Optional[Dict[str, Any]]:
    if get_settings().is_production:
        return None
    return {
        "type": type(exc).__name__,
        "message": str(exc),
        "traceback": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    }


# -----------------------------------------------------------------------------
# Error handlers
# -----------------------------------------------------------------------------


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException) -> HTMLResponse:
    if exc.status_code == status.HTTP_404_NOT_FOUND:
        logger.debug("404 error handler called for %s", request.url.path)
        return _not_found(request)
    return _render(
        request,
        "error.html",
        {"message": exc.detail, "error": _error_details(exc), "status_code": exc.status_code},
        status_code=exc.status_code,
    )


@app.exception_handler(Exception)
async def server_error(request: Request, exc: Exception) -> HTMLResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _render(
        request,
        "error.html",
        {
            "message": str(exc) or "Internal Server Error",
            "error": _error_details(exc),
            "status_code": status.HTTP_500_INTERNAL_SERVER_ERROR,
        },
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


# -----------------------------------------------------------------------------
# Routes
# -----------------------------------------------------------------------------


@app.get("/")
def index() -> RedirectResponse:
    return _redirect("/books")


@app.get("/error")
def custom_error() -> None:
    logger.info("Custom error route called")
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Custom 500 error thrown",
    )


@app.get("/books", response_class=HTMLResponse)
def list_books(
    request: Request,
    page: Optional[str] = Query(None),
    store: CatalogStore = Depends(get_store),
) -> Response:
    return _respond(request, list_page(store, page))


@app.get("/books/search", response_class=HTMLResponse)
def search_books(
    request: Request,
    term: Optional[str] = Query(None),
    page: Optional[str] = Query(None),
    store: CatalogStore = Depends(get_store),
) -> Response:
    return _respond(request, search_page(store, term, page))


@app.get("/books/new", response_class=HTMLResponse)
def new_book(request: Request) -> HTMLResponse:
    return _render(request, "books/new.html", {"book": Book(), "title": "New Book"})


@app.post("/books")
def create_book(
    request: Request,
    form: BookForm = Depends(_book_form),
    store: CatalogStore = Depends(get_store),
) -> Response:
    outcome = store.create_book(form.fields())
    if isinstance(outcome, Saved):
        return _redirect(f"/books/{outcome.book.id}")
    return _render(
        request,
        "books/new.html",
        {"book": outcome.book, "errors": outcome.errors, "title": "New Book"},
    )


@app.get("/books/{book_id}", response_class=HTMLResponse)
def edit_book(
    request: Request,
    book_id: str,
    store: CatalogStore = Depends(get_store),
) -> HTMLResponse:
    key = _parse_id(book_id)
    book = store.get_book(key) if key is not None else None
    if book is None:
        return _not_found(request)
    return _render(request, "books/edit.html", {"book": book, "title": book.title})


@app.post("/books/{book_id}")
def update_book(
    request: Request,
    book_id: str,
    form: BookForm = Depends(_book_form),
    store: CatalogStore = Depends(get_store),
) -> Response:
    key = _parse_id(book_id)
    outcome = store.update_book(key, form.fields()) if key is not None else None
    if outcome is None:
        return _not_found(request)
    if isinstance(outcome, Saved):
        return _redirect(f"/books/{outcome.book.id}")
    return _render(
        request,
        "books/edit.html",
        {"book": outcome.book, "errors": outcome.errors, "title": "Edit Book"},
    )


@app.post("/books/{book_id}/delete")
def delete_book(
    request: Request,
    book_id: str,
    store: CatalogStore = Depends(get_store),
) -> Response:
    key = _parse_id(book_id)
    if key is None or not store.delete_book(key):
        return _not_found(request)
    return _redirect("/books")
