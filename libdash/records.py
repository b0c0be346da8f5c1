"""Pydantic models for record payloads.

Records are stored as plain camelCase mappings. These models only guard
the write boundary and check declared fields. Unknown fields are kept
as-is; the record store rejects the ones the read-time corruption checks
would drop.
"""

from typing import Any, Dict, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from libdash.errors import ValidationError
from libdash.utils.validators import BORROWER_CATEGORIES, DateValidator, TextValidator


class RecordModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True, alias_generator=to_camel)


def _check_date(value: Optional[str]) -> Optional[str]:
    if value is not None and not DateValidator.is_iso_date(value):
        raise ValueError(f"'{value}' is not an ISO date")
    return value


class BookPayload(RecordModel):
    name: Optional[str] = None
    title: Optional[str] = None
    author: Optional[str] = None
    publisher: Optional[str] = None
    cover_image: Optional[str] = None
    book_code: Optional[str] = None
    copies: Optional[int] = Field(None, ge=0)
    cabinet: Optional[str] = None
    shelf: Optional[str] = None
    num: Optional[str] = None
    genres: Optional[str] = None
    tags: Optional[str] = None
    total_pages: Optional[int] = Field(None, ge=0)
    published_date: Optional[str] = None

    _dates = field_validator("published_date")(_check_date)

    @model_validator(mode="after")
    def _require_name(self):
        if not (self.name or self.title):
            raise ValueError("Book requires a name or title")
        return self


class BorrowerPayload(RecordModel):
    name: str
    member_id: Optional[str] = None
    phone: Optional[str] = None
    category: Optional[str] = None
    joined_date: Optional[str] = None
    expiry_date: Optional[str] = None
    email: Optional[str] = None
    favorite_books: Optional[str] = None

    _dates = field_validator("joined_date", "expiry_date")(_check_date)

    @field_validator("name")
    @classmethod
    def _name(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not TextValidator.validate_name(value):
            raise ValueError("Borrower name must contain letters")
        return value

    @field_validator("category")
    @classmethod
    def _category(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        normalized = value.strip().lower()
        if normalized not in BORROWER_CATEGORIES:
            raise ValueError(f"Unknown borrower category '{value}'")
        return normalized


class LibrarianPayload(RecordModel):
    name: Optional[str] = None
    librarian_id: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    appointment_date: Optional[str] = None
    employment_status: Optional[str] = None

    _dates = field_validator("appointment_date")(_check_date)


class BorrowingPayload(RecordModel):
    borrower_id: int
    librarian_id: int
    book_id: Optional[int] = None
    research_id: Optional[int] = None
    borrow_date: str
    due_date: str
    return_date: Optional[str] = None
    status: Literal["borrowed", "returned", "overdue"]
    rating: Optional[int] = Field(None, ge=1, le=10)
    review: Optional[str] = None

    _dates = field_validator("borrow_date", "due_date", "return_date")(_check_date)


class MembershipApplicationPayload(RecordModel):
    name: str
    stage: str
    member_id: Optional[str] = None
    birthdate: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None


class FeedbackPayload(RecordModel):
    stage: str
    membership_status: str
    type: str
    message: str
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    status: Optional[str] = None

    @field_validator("message")
    @classmethod
    def _message(cls, value: Optional[str]) -> Optional[str]:
        return TextValidator.sanitize_text(value) if value is not None else value


class ResearchPaperPayload(RecordModel):
    name: str
    author: Optional[str] = None
    publisher: Optional[str] = None
    research_code: Optional[str] = None
    cover_image: Optional[str] = None
    copies: Optional[int] = Field(None, ge=0)
    keywords: Optional[str] = None


class QuotePayload(RecordModel):
    content: str
    page: Optional[int] = None
    chapter: Optional[str] = None
    author: Optional[str] = None
    tags: Optional[str] = None
    is_favorite: Optional[bool] = None


class BookIndexPayload(RecordModel):
    title: str
    page: Optional[int] = None
    level: Optional[int] = Field(None, ge=0)
    order: Optional[int] = None
    parent_id: Optional[int] = None


def _format_errors(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()) if item != "__root__")
        message = error.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts)


def validate_payload(model: Type[RecordModel], payload: Any) -> Dict[str, Any]:
    """Validate a payload and return it with its declared fields normalized.

    Declared fields supplied under their snake_case name are stored under
    the camelCase alias. Undeclared fields pass through unchanged.
    """
    if not isinstance(payload, dict):
        raise ValidationError(f"Expected an object payload, got {type(payload).__name__}")
    try:
        parsed = model.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(_format_errors(exc)) from exc

    result = dict(payload)
    for name, info in model.model_fields.items():
        if name not in parsed.model_fields_set:
            continue
        result.pop(name, None)
        result[info.alias or name] = getattr(parsed, name)
    return result


PAYLOAD_MODELS: Dict[str, Type[RecordModel]] = {
    "books": BookPayload,
    "borrowers": BorrowerPayload,
    "librarians": LibrarianPayload,
    "borrowings": BorrowingPayload,
    "membershipApplications": MembershipApplicationPayload,
    "feedback": FeedbackPayload,
    "research_papers": ResearchPaperPayload,
    "book_quotes": QuotePayload,
    "book_index": BookIndexPayload,
}
