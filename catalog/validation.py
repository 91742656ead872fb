"""
Field validation for book create and update requests.
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

from bson import ObjectId

from catalog.errors import InvalidInput
from catalog.models import BookChanges, BookFields

MIN_YEAR = -4000
YEAR_LOOKAHEAD = 5
MAX_YEAR_DIGITS = 6

_INTEGER_RE = re.compile(r"^[+-]?\d+$")


def max_year() -> int:
    """Latest accepted publication year."""
    return datetime.utcnow().year + YEAR_LOOKAHEAD


def validate_book_id(book_id: str) -> str:
    """Reject ids that cannot name a stored record."""
    if not isinstance(book_id, str) or not ObjectId.is_valid(book_id):
        raise InvalidInput("Invalid Book ID format")
    return book_id


def parse_year(value: Union[int, str, None]) -> Optional[int]:
    """
    Parse an optional year.

    None and blank strings mean "no year". Anything else must be an integer
    literal within [MIN_YEAR, max_year()].
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidInput("Year must be a valid integer.")
    if isinstance(value, int):
        year = value
    else:
        text = str(value).strip()
        if not text:
            return None
        if not _INTEGER_RE.match(text):
            raise InvalidInput("Year must be a valid integer.")
        if len(text.lstrip("+-")) > MAX_YEAR_DIGITS:
            raise InvalidInput(f"Year must be between {MIN_YEAR} and {max_year()}.")
        year = int(text)

    upper = max_year()
    if year < MIN_YEAR or year > upper:
        raise InvalidInput(f"Year must be between {MIN_YEAR} and {upper}.")
    return year


def _clean_text(value: Optional[str]) -> str:
    return value.strip() if isinstance(value, str) else ""


def validate_new_book(
    title: Optional[str],
    author: Optional[str],
    year: Union[int, str, None] = None
) -> BookFields:
    """Validate the fields of a book about to be created."""
    clean_title = _clean_text(title)
    clean_author = _clean_text(author)
    if not clean_title or not clean_author:
        raise InvalidInput("Missing required fields: title, author")
    return BookFields(title=clean_title, author=clean_author, year=parse_year(year))


def validate_changes(changes: BookChanges) -> Tuple[Dict[str, Any], List[str]]:
    """
    Validate requested update fields.

    Returns:
        Tuple of (fields to set, fields to unset). Only fields present in the
        request appear in either.
    """
    provided = changes.model_fields_set
    set_fields: Dict[str, Any] = {}
    unset_fields: List[str] = []

    if "title" in provided:
        title = _clean_text(changes.title)
        if not title:
            raise InvalidInput("Title cannot be empty if provided.")
        set_fields["title"] = title

    if "author" in provided:
        author = _clean_text(changes.author)
        if not author:
            raise InvalidInput("Author cannot be empty if provided.")
        set_fields["author"] = author

    if "year" in provided:
        year = parse_year(changes.year)
        if year is None:
            unset_fields.append("year")
        else:
            set_fields["year"] = year

    return set_fields, unset_fields
