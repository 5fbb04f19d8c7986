"""
Database Schemas for the Local Library catalog

Each Pydantic model represents a MongoDB collection.
Collection name is the lowercase of the class name:
- Author -> "author"
- Genre -> "genre"
- Book -> "book"
- BookInstance -> "bookinstance"

References between collections are stored as ObjectId strings. Display-only
values (full name, formatted dates, canonical path) are plain functions over
a model instance, defined at the bottom of this module.
"""

from datetime import datetime
from typing import List, Literal, Optional, get_args

from pydantic import BaseModel, Field

Status = Literal["Available", "Maintenance", "Loaned", "Reserved"]
STATUS_CHOICES = get_args(Status)


class Author(BaseModel):
    id: Optional[str] = Field(None, description="ObjectId as string, assigned on insert")
    first_name: str = Field(..., max_length=100, description="Given name")
    family_name: str = Field(..., max_length=100, description="Family name")
    date_of_birth: Optional[datetime] = Field(None, description="Date of birth")
    date_of_death: Optional[datetime] = Field(None, description="Date of death")


class Genre(BaseModel):
    id: Optional[str] = Field(None, description="ObjectId as string, assigned on insert")
    name: str = Field(..., min_length=3, max_length=100, description="Genre name, logically unique")


class Book(BaseModel):
    id: Optional[str] = Field(None, description="ObjectId as string, assigned on insert")
    title: str = Field(..., description="Book title")
    author: str = Field(..., description="Author ObjectId as string")
    summary: str = Field(..., description="Short summary")
    isbn: str = Field(..., description="ISBN identifier")
    genre: List[str] = Field(default_factory=list, description="Genre ObjectIds as strings")


class BookInstance(BaseModel):
    id: Optional[str] = Field(None, description="ObjectId as string, assigned on insert")
    book: str = Field(..., description="Book ObjectId as string")
    imprint: str = Field(..., description="Publisher and edition details")
    status: Status = Field("Maintenance", description="Availability of this copy")
    due_back: Optional[datetime] = Field(default_factory=datetime.utcnow, description="Date the copy is due back")


# ----------------------
# Derived values
# ----------------------

_PATH_SEGMENTS = {
    Author: "author",
    Genre: "genre",
    Book: "book",
    BookInstance: "bookinstance",
}

LIST_PATHS = {
    Author: "/catalog/authors",
    Genre: "/catalog/genres",
    Book: "/catalog/books",
    BookInstance: "/catalog/bookinstances",
}


def canonical_path(entity: BaseModel) -> str:
    return f"/catalog/{_PATH_SEGMENTS[type(entity)]}/{entity.id}"


def full_name(author: Author) -> str:
    """'family, first', or an empty string unless both parts are present."""
    if not author.first_name or not author.family_name:
        return ""
    return f"{author.family_name}, {author.first_name}"


def format_date(value: Optional[datetime]) -> str:
    """Medium date style, e.g. 'Oct 18, 2026'."""
    if not value:
        return ""
    return f"{value:%b} {value.day}, {value.year}"


def iso_date(value) -> str:
    if not value:
        return ""
    # Unparsed form input is echoed back as typed.
    if isinstance(value, str):
        return value
    return value.date().isoformat()


def lifespan(author: Author) -> str:
    born = format_date(author.date_of_birth)
    died = format_date(author.date_of_death)
    if not born and not died:
        return ""
    return f"{born} - {died}"
