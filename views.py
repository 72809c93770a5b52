from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlencode

from catalog import Book, CatalogStore

PAGE_SIZE = 10
# Presentation metadata handed to the listing view; always 1.
PAGE_LINKS = 1


@dataclass
class Redirect:
    url: str


@dataclass
class Render:
    template: str
    context: Dict[str, Any]


def parse_page(value: Optional[str]) -> Optional[int]:
    """Return a usable 1-based page number, or None if the value needs correcting."""
    if value is None:
        return None
    text = str(value).strip()
    if not (text.isascii() and text.isdigit()):
        return None
    page = int(text)
    return page if page > 0 else None


def page_count(total: int, page_size: int = PAGE_SIZE) -> int:
    return math.ceil(total / page_size)


def page_offset(page: int, page_size: int = PAGE_SIZE) -> int:
    return (page - 1) * page_size


def search_url(term: str, page: int) -> str:
    return "/books/search?" + urlencode({"term": term, "page": page})


def list_page(store: CatalogStore, raw_page: Optional[str]) -> Union[Redirect, Render]:
    page = parse_page(raw_page)
    if page is None:
        return Redirect("/books?page=1")

    total = store.count()
    num_of_pages = page_count(total)
    # An empty catalog still has a first page to show.
    last_page = max(num_of_pages, 1)
    if page > last_page:
        return Redirect(f"/books?page={last_page}")

    books: List[Book] = store.list_books(limit=PAGE_SIZE, offset=page_offset(page))
    return Render(
        "books/index.html",
        {
            "books": books,
            "title": "Books",
            "page": page,
            "num_of_pages": num_of_pages,
            "page_links": PAGE_LINKS,
            "total": total,
        },
    )


def search_page(store: CatalogStore, raw_term: Optional[str], raw_page: Optional[str]) -> Union[Redirect, Render]:
    term = (raw_term or "").strip().lower()
    if not term:
        return Redirect("/books")

    page = parse_page(raw_page)
    if page is None:
        return Redirect(search_url(term, 1))

    total = store.count_matches(term)
    if total == 0:
        return Render("books/none-found.html", {"term": term, "title": "Search"})

    num_of_pages = page_count(total)
    if page > num_of_pages:
        return Redirect(search_url(term, num_of_pages))

    books, total = store.search_books(term, limit=PAGE_SIZE, offset=page_offset(page))

    return Render(
        "books/index.html",
        {
            "books": books,
            "title": "Search",
            "page": page,
            "num_of_pages": num_of_pages,
            "page_links": PAGE_LINKS,
            "term": term,
            "total": total,
        },
    )
