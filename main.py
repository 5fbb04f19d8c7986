from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, Union

from fastapi import Depends, FastAPI, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from pymongo.errors import PyMongoError

import handlers
from config import configure_logging, get_logger, settings
from database import Repositories, close_client, get_database, get_repositories
from handlers import NotFound, Redirect, View
from schemas import (
    Author as AuthorSchema,
    Book as BookSchema,
    BookInstance as BookInstanceSchema,
    Genre as GenreSchema,
    canonical_path,
    format_date,
    full_name,
    iso_date,
    lifespan as author_lifespan,
)

configure_logging()
logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    close_client()


app = FastAPI(title=settings.app_name, debug=settings.debug, lifespan=lifespan)

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
templates.env.filters["url"] = canonical_path
templates.env.filters["full_name"] = full_name
templates.env.filters["format_date"] = format_date
templates.env.filters["iso_date"] = iso_date
templates.env.filters["lifespan"] = author_lifespan

# ----------------------
# Utility helpers
# ----------------------

def respond(request: Request, outcome: Union[View, Redirect]):
    if isinstance(outcome, Redirect):
        return RedirectResponse(outcome.location, status_code=303)
    return templates.TemplateResponse(request, f"{outcome.template}.html", outcome.context)


async def form_data(request: Request) -> Dict[str, Any]:
    # Repeated keys (genre checkboxes) come through as lists.
    form = await request.form()
    data: Dict[str, Any] = {}
    for key in form.keys():
        values = form.getlist(key)
        data[key] = values[0] if len(values) == 1 else values
    return data


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return templates.TemplateResponse(
        request, "error.html", {"title": "Not Found", "message": str(exc), "status": 404}, status_code=404
    )


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError):
    logger.exception("Store operation failed for %s %s", request.method, request.url.path)
    return templates.TemplateResponse(
        request, "error.html", {"title": "Error", "message": "Database error", "status": 500}, status_code=500
    )

# ----------------------
# Health & Schema
# ----------------------

@app.get("/", include_in_schema=False)
def read_root():
    return RedirectResponse("/catalog", status_code=303)


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_name": settings.database_name,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        response["collections"] = get_database().list_collection_names()[:10]
    except PyMongoError as e:
        logger.warning("Store health check failed: %s", e)
        response["database"] = f"❌ Error: {str(e)[:50]}"
        return response
    response["database"] = "✅ Connected & Working"
    response["connection_status"] = "Connected"
    return response


@app.get("/schema")
def get_schema():
    # Return JSON schema-like description for viewer tools
    return {
        "author": AuthorSchema.model_json_schema(),
        "genre": GenreSchema.model_json_schema(),
        "book": BookSchema.model_json_schema(),
        "bookinstance": BookInstanceSchema.model_json_schema(),
    }

# ----------------------
# Catalog home
# ----------------------

@app.get("/catalog", response_class=HTMLResponse)
async def catalog_index(request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.index(repos))

# ----------------------
# Authors
# ----------------------

@app.get("/catalog/authors", response_class=HTMLResponse)
async def author_list(request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.author_list(repos))


@app.get("/catalog/author/create", response_class=HTMLResponse)
async def author_create_get(request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.author_create_get(repos))


@app.post("/catalog/author/create", response_class=HTMLResponse)
async def author_create_post(request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.author_create_post(repos, await form_data(request)))


@app.get("/catalog/author/{author_id}", response_class=HTMLResponse)
async def author_detail(author_id: str, request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.author_detail(repos, author_id))


@app.get("/catalog/author/{author_id}/delete", response_class=HTMLResponse)
async def author_delete_get(author_id: str, request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.author_delete_get(repos, author_id))


@app.post("/catalog/author/{author_id}/delete", response_class=HTMLResponse)
async def author_delete_post(author_id: str, request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.author_delete_post(repos, author_id))


@app.get("/catalog/author/{author_id}/update", response_class=HTMLResponse)
async def author_update_get(author_id: str, request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.author_update_get(repos, author_id))


@app.post("/catalog/author/{author_id}/update", response_class=HTMLResponse)
async def author_update_post(author_id: str, request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.author_update_post(repos, author_id, await form_data(request)))

# ----------------------
# Genres
# ----------------------

@app.get("/catalog/genres", response_class=HTMLResponse)
async def genre_list(request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.genre_list(repos))


@app.get("/catalog/genre/create", response_class=HTMLResponse)
async def genre_create_get(request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.genre_create_get(repos))


@app.post("/catalog/genre/create", response_class=HTMLResponse)
async def genre_create_post(request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.genre_create_post(repos, await form_data(request)))


@app.get("/catalog/genre/{genre_id}", response_class=HTMLResponse)
async def genre_detail(genre_id: str, request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.genre_detail(repos, genre_id))


@app.get("/catalog/genre/{genre_id}/delete", response_class=HTMLResponse)
async def genre_delete_get(genre_id: str, request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.genre_delete_get(repos, genre_id))


@app.post("/catalog/genre/{genre_id}/delete", response_class=HTMLResponse)
async def genre_delete_post(genre_id: str, request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.genre_delete_post(repos, genre_id))


@app.get("/catalog/genre/{genre_id}/update", response_class=HTMLResponse)
async def genre_update_get(genre_id: str, request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.genre_update_get(repos, genre_id))


@app.post("/catalog/genre/{genre_id}/update", response_class=HTMLResponse)
async def genre_update_post(genre_id: str, request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.genre_update_post(repos, genre_id, await form_data(request)))

# ----------------------
# Books
# ----------------------

@app.get("/catalog/books", response_class=HTMLResponse)
async def book_list(request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.book_list(repos))


@app.get("/catalog/book/create", response_class=HTMLResponse)
async def book_create_get(request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.book_create_get(repos))


@app.post("/catalog/book/create", response_class=HTMLResponse)
async def book_create_post(request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.book_create_post(repos, await form_data(request)))


@app.get("/catalog/book/{book_id}", response_class=HTMLResponse)
async def book_detail(book_id: str, request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.book_detail(repos, book_id))


@app.get("/catalog/book/{book_id}/delete", response_class=HTMLResponse)
async def book_delete_get(book_id: str, request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.book_delete_get(repos, book_id))


@app.post("/catalog/book/{book_id}/delete", response_class=HTMLResponse)
async def book_delete_post(book_id: str, request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.book_delete_post(repos, book_id))


@app.get("/catalog/book/{book_id}/update", response_class=HTMLResponse)
async def book_update_get(book_id: str, request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.book_update_get(repos, book_id))


@app.post("/catalog/book/{book_id}/update", response_class=HTMLResponse)
async def book_update_post(book_id: str, request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.book_update_post(repos, book_id, await form_data(request)))

# ----------------------
# Book instances
# ----------------------

@app.get("/catalog/bookinstances", response_class=HTMLResponse)
async def bookinstance_list(request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.bookinstance_list(repos))


@app.get("/catalog/bookinstance/create", response_class=HTMLResponse)
async def bookinstance_create_get(request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.bookinstance_create_get(repos))


@app.post("/catalog/bookinstance/create", response_class=HTMLResponse)
async def bookinstance_create_post(request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.bookinstance_create_post(repos, await form_data(request)))


@app.get("/catalog/bookinstance/{instance_id}", response_class=HTMLResponse)
async def bookinstance_detail(instance_id: str, request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.bookinstance_detail(repos, instance_id))


@app.get("/catalog/bookinstance/{instance_id}/delete", response_class=HTMLResponse)
async def bookinstance_delete_get(instance_id: str, request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.bookinstance_delete_get(repos, instance_id))


@app.post("/catalog/bookinstance/{instance_id}/delete", response_class=HTMLResponse)
async def bookinstance_delete_post(instance_id: str, request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.bookinstance_delete_post(repos, instance_id))


@app.get("/catalog/bookinstance/{instance_id}/update", response_class=HTMLResponse)
async def bookinstance_update_get(instance_id: str, request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.bookinstance_update_get(repos, instance_id))


@app.post("/catalog/bookinstance/{instance_id}/update", response_class=HTMLResponse)
async def bookinstance_update_post(instance_id: str, request: Request, repos: Repositories = Depends(get_repositories)):
    return respond(request, await handlers.bookinstance_update_post(repos, instance_id, await form_data(request)))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.port)
