"""
Form validation and sanitization.

A form is declared as a list of ``FieldSpec``s and a list of
``Rule(field, check, message)`` triples. ``validate`` is the only evaluator:
for every field it trims the raw input, runs the presence/length rules,
escapes markup characters, runs the rules flagged ``escaped=True`` against the
escaped value and finally parses date fields. It never raises; callers get a
``ValidationResult`` with the sanitized values and the ordered error list.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional, Sequence

from schemas import STATUS_CHOICES

_ESCAPES = str.maketrans({
    "&": "&amp;",
    '"': "&quot;",
    "'": "&#x27;",
    "<": "&lt;",
    ">": "&gt;",
    "/": "&#x2F;",
    "\\": "&#x5C;",
    "`": "&#96;",
})

_ALPHANUMERIC = re.compile(r"[0-9A-Za-z]+")


class FieldSpec(NamedTuple):
    name: str
    kind: str = "text"  # text | date | list | choice
    optional: bool = False


class Rule(NamedTuple):
    field: str
    check: Callable[[str], bool]
    message: str
    escaped: bool = False


class FieldError(NamedTuple):
    field: str
    message: str


class ValidationResult(NamedTuple):
    values: Dict[str, Any]
    errors: List[FieldError]

    @property
    def ok(self) -> bool:
        return not self.errors


class Form(NamedTuple):
    fields: Sequence[FieldSpec]
    rules: Sequence[Rule]


# ----------------------
# Sanitizers and predicates
# ----------------------

def escape(value: str) -> str:
    return value.translate(_ESCAPES)


def trim(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def min_length(n: int) -> Callable[[str], bool]:
    return lambda value: len(value) >= n


def max_length(n: int) -> Callable[[str], bool]:
    return lambda value: len(value) <= n


def is_alphanumeric(value: str) -> bool:
    return bool(_ALPHANUMERIC.fullmatch(value))


def parse_date(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def is_iso_date(value: str) -> bool:
    return parse_date(value) is not None


def one_of(choices: Sequence[str]) -> Callable[[str], bool]:
    return lambda value: value in choices


# ----------------------
# Evaluator
# ----------------------

def validate(data: Mapping[str, Any], form: Form) -> ValidationResult:
    values: Dict[str, Any] = {}
    errors: List[FieldError] = []

    for spec in form.fields:
        raw = data.get(spec.name)

        if spec.kind == "list":
            if raw is None:
                raw = []
            elif isinstance(raw, str):
                raw = [raw]
            values[spec.name] = [escape(trim(item)) for item in raw if trim(item)]
            continue

        value = trim(raw)
        if spec.optional and not value:
            values[spec.name] = None
            continue

        rules = [rule for rule in form.rules if rule.field == spec.name]
        for rule in rules:
            if not rule.escaped and not rule.check(value):
                errors.append(FieldError(spec.name, rule.message))

        value = escape(value)
        for rule in rules:
            if rule.escaped and not rule.check(value):
                errors.append(FieldError(spec.name, rule.message))

        if spec.kind == "date":
            parsed = parse_date(value)
            values[spec.name] = parsed if parsed is not None else value
        else:
            values[spec.name] = value

    return ValidationResult(values, errors)


# ----------------------
# Form definitions
# ----------------------

AUTHOR_FORM = Form(
    fields=[
        FieldSpec("first_name"),
        FieldSpec("family_name"),
        FieldSpec("date_of_birth", "date", optional=True),
        FieldSpec("date_of_death", "date", optional=True),
    ],
    rules=[
        Rule("first_name", min_length(1), "First name must be specified."),
        Rule("first_name", max_length(100), "First name must be at most 100 characters."),
        Rule("first_name", is_alphanumeric, "First name has non-alphanumeric characters.", escaped=True),
        Rule("family_name", min_length(1), "Family name must be specified."),
        Rule("family_name", max_length(100), "Family name must be at most 100 characters."),
        Rule("family_name", is_alphanumeric, "Family name has non-alphanumeric characters.", escaped=True),
        Rule("date_of_birth", is_iso_date, "Invalid date of birth"),
        Rule("date_of_death", is_iso_date, "Invalid date of death"),
    ],
)

GENRE_FORM = Form(
    fields=[FieldSpec("name")],
    rules=[
        Rule("name", min_length(3), "Genre name must contain at least 3 characters"),
        Rule("name", max_length(100), "Genre name must be at most 100 characters", escaped=True),
    ],
)

BOOK_FORM = Form(
    fields=[
        FieldSpec("title"),
        FieldSpec("author"),
        FieldSpec("summary"),
        FieldSpec("isbn"),
        FieldSpec("genre", "list"),
    ],
    rules=[
        Rule("title", min_length(1), "Title must not be empty."),
        Rule("author", min_length(1), "Author must not be empty."),
        Rule("summary", min_length(1), "Summary must not be empty."),
        Rule("isbn", min_length(1), "ISBN must not be empty."),
    ],
)

BOOKINSTANCE_FORM = Form(
    fields=[
        FieldSpec("book"),
        FieldSpec("imprint"),
        FieldSpec("status", "choice", optional=True),
        FieldSpec("due_back", "date", optional=True),
    ],
    rules=[
        Rule("book", min_length(1), "Book must be specified"),
        Rule("imprint", min_length(1), "Imprint must be specified"),
        Rule("status", one_of(STATUS_CHOICES), "Invalid status"),
        Rule("due_back", is_iso_date, "Invalid date"),
    ],
)
