"""
Catalog workflows.

Every handler takes the ``Repositories`` it works on as its first argument and
returns either a ``View`` (template name plus context) or a ``Redirect``. A
lookup that must exist (detail pages, update forms) raises ``NotFound``.

pymongo is blocking, so store calls go through Starlette's thread pool and
independent reads are awaited together with ``asyncio.gather``.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from config import get_logger
from database import Repositories, Repository
from schemas import (
    LIST_PATHS,
    STATUS_CHOICES,
    Author,
    Book,
    BookInstance,
    Genre,
    canonical_path,
)
from validation import AUTHOR_FORM, BOOK_FORM, BOOKINSTANCE_FORM, GENRE_FORM, validate

logger = get_logger("handlers")

M = TypeVar("M", bound=BaseModel)


class NotFound(Exception):
    pass


@dataclass
class View:
    template: str
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Redirect:
    location: str


def _build(model: Type[M], values: Mapping[str, Any], id: Optional[str] = None) -> M:
    # Empty optional fields fall back to the schema defaults.
    data = {k: v for k, v in values.items() if v is not None}
    return model(id=id, **data)


def _partial(model: Type[M], values: Mapping[str, Any], id: Optional[str] = None) -> M:
    """Unvalidated entity carrying sanitized input back to the form."""
    return model.model_construct(id=id, **values)


async def _populate_all(items: List[M], field_name: str, repo: Repository) -> List[M]:
    return list(await asyncio.gather(
        *(run_in_threadpool(repo.populate, item, field_name) for item in items)
    ))


# ----------------------
# Index
# ----------------------

async def index(repos: Repositories) -> View:
    book_count, instance_count, available_count, author_count, genre_count = await asyncio.gather(
        run_in_threadpool(repos.books.count),
        run_in_threadpool(repos.bookinstances.count),
        run_in_threadpool(repos.bookinstances.count, {"status": "Available"}),
        run_in_threadpool(repos.authors.count),
        run_in_threadpool(repos.genres.count),
    )
    return View("index", {
        "title": "Local Library Home",
        "book_count": book_count,
        "book_instance_count": instance_count,
        "book_instance_available_count": available_count,
        "author_count": author_count,
        "genre_count": genre_count,
    })


# ----------------------
# Authors
# ----------------------

def _author_books(repos: Repositories, author_id: str) -> List[Book]:
    return repos.books.find({"author": author_id}, projection=["title", "summary"])


async def author_list(repos: Repositories) -> View:
    authors = await run_in_threadpool(repos.authors.find, sort=[("family_name", 1)])
    return View("author_list", {"title": "Author List", "author_list": authors})


async def author_detail(repos: Repositories, author_id: str) -> View:
    author, books = await asyncio.gather(
        run_in_threadpool(repos.authors.find_by_id, author_id),
        run_in_threadpool(_author_books, repos, author_id),
    )
    if author is None:
        logger.warning("Author %s not found", author_id)
        raise NotFound("Author not found")
    return View("author_detail", {"title": "Author Detail", "author": author, "author_books": books})


async def author_create_get(repos: Repositories) -> View:
    return View("author_form", {"title": "Create Author"})


async def author_create_post(repos: Repositories, form: Mapping[str, Any]) -> View | Redirect:
    result = validate(form, AUTHOR_FORM)
    if not result.ok:
        return View("author_form", {
            "title": "Create Author",
            "author": _partial(Author, result.values),
            "errors": result.errors,
        })

    author = _build(Author, result.values)
    await run_in_threadpool(repos.authors.insert, author)
    logger.info("Created author %s", author.id)
    return Redirect(canonical_path(author))


async def author_delete_get(repos: Repositories, author_id: str) -> View | Redirect:
    author, books = await asyncio.gather(
        run_in_threadpool(repos.authors.find_by_id, author_id),
        run_in_threadpool(_author_books, repos, author_id),
    )
    if author is None:
        return Redirect(LIST_PATHS[Author])
    return View("author_delete", {"title": "Delete Author", "author": author, "author_books": books})


async def author_delete_post(repos: Repositories, author_id: str) -> View | Redirect:
    author, books = await asyncio.gather(
        run_in_threadpool(repos.authors.find_by_id, author_id),
        run_in_threadpool(_author_books, repos, author_id),
    )
    if books:
        logger.info("Refusing to delete author %s: %d book(s) reference it", author_id, len(books))
        return View("author_delete", {"title": "Delete Author", "author": author, "author_books": books})

    await run_in_threadpool(repos.authors.delete, author_id)
    logger.info("Deleted author %s", author_id)
    return Redirect(LIST_PATHS[Author])


async def author_update_get(repos: Repositories, author_id: str) -> View:
    author = await run_in_threadpool(repos.authors.find_by_id, author_id)
    if author is None:
        logger.warning("Author %s not found", author_id)
        raise NotFound("Author not found")
    return View("author_form", {"title": "Update Author", "author": author})


async def author_update_post(repos: Repositories, author_id: str, form: Mapping[str, Any]) -> View | Redirect:
    result = validate(form, AUTHOR_FORM)
    if not result.ok:
        return View("author_form", {
            "title": "Update Author",
            "author": _partial(Author, result.values, id=author_id),
            "errors": result.errors,
        })

    author = _build(Author, result.values, id=author_id)
    if not await run_in_threadpool(repos.authors.replace, author_id, author):
        raise NotFound("Author not found")
    logger.info("Updated author %s", author_id)
    return Redirect(canonical_path(author))


# ----------------------
# Genres
# ----------------------

def _genre_books(repos: Repositories, genre_id: str) -> List[Book]:
    return repos.books.find({"genre": genre_id}, projection=["title", "summary"])


async def genre_list(repos: Repositories) -> View:
    genres = await run_in_threadpool(repos.genres.find, sort=[("name", 1)])
    return View("genre_list", {"title": "Genre List", "genre_list": genres})


async def genre_detail(repos: Repositories, genre_id: str) -> View:
    genre, books = await asyncio.gather(
        run_in_threadpool(repos.genres.find_by_id, genre_id),
        run_in_threadpool(_genre_books, repos, genre_id),
    )
    if genre is None:
        logger.warning("Genre %s not found", genre_id)
        raise NotFound("Genre not found")
    return View("genre_detail", {"title": "Genre Detail", "genre": genre, "genre_books": books})


async def genre_create_get(repos: Repositories) -> View:
    return View("genre_form", {"title": "Create Genre"})


async def genre_create_post(repos: Repositories, form: Mapping[str, Any]) -> View | Redirect:
    result = validate(form, GENRE_FORM)
    if not result.ok:
        return View("genre_form", {
            "title": "Create Genre",
            "genre": _partial(Genre, result.values),
            "errors": result.errors,
        })

    existing = await run_in_threadpool(repos.genres.find_one, {"name": result.values["name"]})
    if existing is not None:
        logger.info("Genre %r already exists as %s", existing.name, existing.id)
        return Redirect(canonical_path(existing))

    genre = _build(Genre, result.values)
    await run_in_threadpool(repos.genres.insert, genre)
    logger.info("Created genre %s", genre.id)
    return Redirect(canonical_path(genre))


async def genre_delete_get(repos: Repositories, genre_id: str) -> View | Redirect:
    genre, books = await asyncio.gather(
        run_in_threadpool(repos.genres.find_by_id, genre_id),
        run_in_threadpool(_genre_books, repos, genre_id),
    )
    if genre is None:
        return Redirect(LIST_PATHS[Genre])
    return View("genre_delete", {"title": "Delete Genre", "genre": genre, "genre_books": books})


async def genre_delete_post(repos: Repositories, genre_id: str) -> View | Redirect:
    genre, books = await asyncio.gather(
        run_in_threadpool(repos.genres.find_by_id, genre_id),
        run_in_threadpool(_genre_books, repos, genre_id),
    )
    if books:
        logger.info("Refusing to delete genre %s: %d book(s) reference it", genre_id, len(books))
        return View("genre_delete", {"title": "Delete Genre", "genre": genre, "genre_books": books})

    await run_in_threadpool(repos.genres.delete, genre_id)
    logger.info("Deleted genre %s", genre_id)
    return Redirect(LIST_PATHS[Genre])


async def genre_update_get(repos: Repositories, genre_id: str) -> View:
    genre = await run_in_threadpool(repos.genres.find_by_id, genre_id)
    if genre is None:
        logger.warning("Genre %s not found", genre_id)
        raise NotFound("Couldn't find the genre to rename")
    return View("genre_form", {"title": "Rename Genre", "genre": genre})


async def genre_update_post(repos: Repositories, genre_id: str, form: Mapping[str, Any]) -> View | Redirect:
    result = validate(form, GENRE_FORM)
    if not result.ok:
        return View("genre_form", {
            "title": "Rename Genre",
            "genre": _partial(Genre, result.values, id=genre_id),
            "errors": result.errors,
        })

    genre = _build(Genre, result.values, id=genre_id)
    if not await run_in_threadpool(repos.genres.replace, genre_id, genre):
        raise NotFound("Couldn't find the genre to rename")
    logger.info("Renamed genre %s", genre_id)
    return Redirect(canonical_path(genre))


# ----------------------
# Books
# ----------------------

def _book_instances(repos: Repositories, book_id: str) -> List[BookInstance]:
    return repos.bookinstances.find({"book": book_id})


async def _book_form_choices(repos: Repositories) -> Dict[str, Any]:
    authors, genres = await asyncio.gather(
        run_in_threadpool(repos.authors.find, sort=[("family_name", 1)]),
        run_in_threadpool(repos.genres.find, sort=[("name", 1)]),
    )
    return {"authors": authors, "genres": genres}


async def book_list(repos: Repositories) -> View:
    books = await run_in_threadpool(repos.books.find, sort=[("title", 1)])
    books = await _populate_all(books, "author", repos.authors)
    return View("book_list", {"title": "Book List", "book_list": books})


async def book_detail(repos: Repositories, book_id: str) -> View:
    book, instances = await asyncio.gather(
        run_in_threadpool(repos.books.find_by_id, book_id),
        run_in_threadpool(_book_instances, repos, book_id),
    )
    if book is None:
        logger.warning("Book %s not found", book_id)
        raise NotFound("Book not found")
    book = await run_in_threadpool(repos.authors.populate, book, "author")
    book = await run_in_threadpool(repos.genres.populate, book, "genre")
    return View("book_detail", {"title": "Book Detail", "book": book, "book_instances": instances})


async def book_create_get(repos: Repositories) -> View:
    choices = await _book_form_choices(repos)
    return View("book_form", {"title": "Create Book", **choices})


async def book_create_post(repos: Repositories, form: Mapping[str, Any]) -> View | Redirect:
    result = validate(form, BOOK_FORM)
    if not result.ok:
        choices = await _book_form_choices(repos)
        return View("book_form", {
            "title": "Create Book",
            "book": _partial(Book, result.values),
            "errors": result.errors,
            **choices,
        })

    book = _build(Book, result.values)
    await run_in_threadpool(repos.books.insert, book)
    logger.info("Created book %s", book.id)
    return Redirect(canonical_path(book))


async def book_delete_get(repos: Repositories, book_id: str) -> View | Redirect:
    book, instances = await asyncio.gather(
        run_in_threadpool(repos.books.find_by_id, book_id),
        run_in_threadpool(_book_instances, repos, book_id),
    )
    if book is None:
        return Redirect(LIST_PATHS[Book])
    return View("book_delete", {"title": "Delete Book", "book": book, "book_instances": instances})


async def book_delete_post(repos: Repositories, book_id: str) -> View | Redirect:
    book, instances = await asyncio.gather(
        run_in_threadpool(repos.books.find_by_id, book_id),
        run_in_threadpool(_book_instances, repos, book_id),
    )
    if instances:
        logger.info("Refusing to delete book %s: %d copies reference it", book_id, len(instances))
        return View("book_delete", {"title": "Delete Book", "book": book, "book_instances": instances})

    await run_in_threadpool(repos.books.delete, book_id)
    logger.info("Deleted book %s", book_id)
    return Redirect(LIST_PATHS[Book])


async def book_update_get(repos: Repositories, book_id: str) -> View:
    book, choices = await asyncio.gather(
        run_in_threadpool(repos.books.find_by_id, book_id),
        _book_form_choices(repos),
    )
    if book is None:
        logger.warning("Book %s not found", book_id)
        raise NotFound("Book not found")
    return View("book_form", {"title": "Update Book", "book": book, **choices})


async def book_update_post(repos: Repositories, book_id: str, form: Mapping[str, Any]) -> View | Redirect:
    result = validate(form, BOOK_FORM)
    if not result.ok:
        choices = await _book_form_choices(repos)
        return View("book_form", {
            "title": "Update Book",
            "book": _partial(Book, result.values, id=book_id),
            "errors": result.errors,
            **choices,
        })

    book = _build(Book, result.values, id=book_id)
    if not await run_in_threadpool(repos.books.replace, book_id, book):
        raise NotFound("Book not found")
    logger.info("Updated book %s", book_id)
    return Redirect(canonical_path(book))


# ----------------------
# Book instances
# ----------------------

def _book_choices(repos: Repositories) -> List[Book]:
    return repos.books.find(projection=["title"], sort=[("title", 1)])


def _title_key(instance: BookInstance) -> str:
    return instance.book.title if instance.book is not None else ""


async def bookinstance_list(repos: Repositories) -> View:
    instances = await run_in_threadpool(repos.bookinstances.find)
    instances = await _populate_all(instances, "book", repos.books)
    instances.sort(key=_title_key)
    return View("bookinstance_list", {"title": "Book Instance List", "bookinstance_list": instances})


async def bookinstance_detail(repos: Repositories, instance_id: str) -> View:
    instance = await run_in_threadpool(repos.bookinstances.find_by_id, instance_id)
    if instance is None:
        logger.warning("Book copy %s not found", instance_id)
        raise NotFound("Book copy not found")
    instance = await run_in_threadpool(repos.books.populate, instance, "book")
    return View("bookinstance_detail", {"title": "Book Copy", "bookinstance": instance})


async def bookinstance_create_get(repos: Repositories) -> View:
    books = await run_in_threadpool(_book_choices, repos)
    return View("bookinstance_form", {
        "title": "Create BookInstance",
        "book_list": books,
        "status_choices": STATUS_CHOICES,
    })


async def bookinstance_create_post(repos: Repositories, form: Mapping[str, Any]) -> View | Redirect:
    result = validate(form, BOOKINSTANCE_FORM)
    if not result.ok:
        books = await run_in_threadpool(_book_choices, repos)
        return View("bookinstance_form", {
            "title": "Create BookInstance",
            "book_list": books,
            "status_choices": STATUS_CHOICES,
            "selected_book": result.values["book"],
            "bookinstance": _partial(BookInstance, result.values),
            "errors": result.errors,
        })

    instance = _build(BookInstance, result.values)
    await run_in_threadpool(repos.bookinstances.insert, instance)
    logger.info("Created book copy %s", instance.id)
    return Redirect(canonical_path(instance))


async def bookinstance_delete_get(repos: Repositories, instance_id: str) -> View | Redirect:
    instance = await run_in_threadpool(repos.bookinstances.find_by_id, instance_id)
    if instance is None:
        return Redirect(LIST_PATHS[BookInstance])
    instance = await run_in_threadpool(repos.books.populate, instance, "book")
    return View("bookinstance_delete", {"title": "Delete Book Copy", "bookinstance": instance})


async def bookinstance_delete_post(repos: Repositories, instance_id: str) -> Redirect:
    await run_in_threadpool(repos.bookinstances.delete, instance_id)
    logger.info("Deleted book copy %s", instance_id)
    return Redirect(LIST_PATHS[BookInstance])


async def bookinstance_update_get(repos: Repositories, instance_id: str) -> View:
    instance, books = await asyncio.gather(
        run_in_threadpool(repos.bookinstances.find_by_id, instance_id),
        run_in_threadpool(_book_choices, repos),
    )
    if instance is None:
        logger.warning("Book copy %s not found", instance_id)
        raise NotFound("Couldn't find book copy")
    return View("bookinstance_form", {
        "title": "Update BookInstance",
        "book_list": books,
        "status_choices": STATUS_CHOICES,
        "selected_book": instance.book,
        "bookinstance": instance,
    })


async def bookinstance_update_post(repos: Repositories, instance_id: str, form: Mapping[str, Any]) -> View | Redirect:
    result = validate(form, BOOKINSTANCE_FORM)
    if not result.ok:
        books = await run_in_threadpool(_book_choices, repos)
        return View("bookinstance_form", {
            "title": "Update BookInstance",
            "book_list": books,
            "status_choices": STATUS_CHOICES,
            "selected_book": result.values["book"],
            "bookinstance": _partial(BookInstance, result.values, id=instance_id),
            "errors": result.errors,
        })

    instance = _build(BookInstance, result.values, id=instance_id)
    if not await run_in_threadpool(repos.bookinstances.replace, instance_id, instance):
        raise NotFound("Couldn't find book copy")
    logger.info("Updated book copy %s", instance_id)
    return Redirect(canonical_path(instance))
