import re
from typing import Annotated, List, Optional, Union

from pydantic import AfterValidator, BaseModel, EmailStr, Field, field_validator, model_validator

from models import DOCUMENT_CATEGORIES

MAX_FILE_SIZE = 10 * 1024 * 1024
MAX_FILES_PER_UPLOAD = 10

MIME_EXTENSIONS = {
    "application/pdf": ".pdf",
    "application/msword": ".doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
    "text/plain": ".txt",
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "application/vnd.ms-excel": ".xls",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ".xlsx",
    "application/vnd.ms-powerpoint": ".ppt",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": ".pptx",
}
ALLOWED_MIME_TYPES = [
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
    "image/jpeg",
    "image/png",
    "image/gif",
]

# Only these formats carry text we can hand to the AI gateway
QUERYABLE_MIME_TYPES = ["application/pdf", "text/plain"]

_URL_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://[^\s/]+\S*$")


def validate_file_type(mime_type: Optional[str]) -> bool:
    return mime_type in ALLOWED_MIME_TYPES


def validate_file_size(size: int, max_size: int = MAX_FILE_SIZE) -> bool:
    return size <= max_size


def get_file_extension(mime_type: str) -> str:
    return MIME_EXTENSIONS.get(mime_type, "")


def sanitize_filename(filename: str) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9.-]", "_", filename)
    cleaned = re.sub(r"_{2,}", "_", cleaned)
    return cleaned.strip("_")


def _check_category(value: str) -> str:
    if value not in DOCUMENT_CATEGORIES:
        raise ValueError(f"Category must be one of: {', '.join(DOCUMENT_CATEGORIES)}")
    return value


def _check_username(value: str) -> str:
    if not value.isascii() or not value.isalnum():
        raise ValueError("Username must contain only alphanumeric characters")
    if len(value) < 3:
        raise ValueError("Username must be at least 3 characters long")
    if len(value) > 30:
        raise ValueError("Username must not exceed 30 characters")
    return value


def _check_full_name(value: str) -> str:
    if len(value) < 2:
        raise ValueError("Full name must be at least 2 characters long")
    if len(value) > 100:
        raise ValueError("Full name must not exceed 100 characters")
    return value


def _check_avatar_url(value: str) -> str:
    if value and not _URL_RE.match(value):
        raise ValueError("Avatar URL must be a valid URL")
    return value


def _check_feedback_text(value: str) -> str:
    if len(value.strip()) < 10:
        raise ValueError("Feedback must be at least 10 characters long")
    return value


Category = Annotated[str, AfterValidator(_check_category)]
Username = Annotated[str, AfterValidator(_check_username)]
FullName = Annotated[str, AfterValidator(_check_full_name)]
AvatarUrl = Annotated[str, AfterValidator(_check_avatar_url)]
FeedbackText = Annotated[str, AfterValidator(_check_feedback_text)]


# ---- auth ----

class RegisterRequest(BaseModel):
    email: EmailStr
    password: str
    username: Username
    full_name: FullName
    avatar_url: Optional[AvatarUrl] = None

    @field_validator("password")
    @classmethod
    def password_length(cls, value: str) -> str:
        if len(value) < 6:
            raise ValueError("Password must be at least 6 characters long")
        return value


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = None


class ProfileUpdateRequest(BaseModel):
    username: Optional[Username] = None
    full_name: Optional[FullName] = None
    avatar_url: Optional[AvatarUrl] = None

    @model_validator(mode="after")
    def at_least_one_field(self):
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided for update")
        return self


# ---- documents ----

class DocumentMetadata(BaseModel):
    """Form fields sent next to an uploaded file."""
    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    category: Category = "general"


class DocumentUpdateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    category: Category


# ---- AI features ----

class QueryRequest(BaseModel):
    question: str
    context: str = "general"
    language: str = "en"

    @field_validator("question")
    @classmethod
    def question_length(cls, value: str) -> str:
        if len(value.strip()) < 3:
            raise ValueError("Question must be at least 3 characters long")
        return value.strip()


class ClauseExtractionRequest(BaseModel):
    clauseTypes: Union[str, List[str]] = "all"
    language: str = "en"

    def clause_type_list(self) -> List[str]:
        if isinstance(self.clauseTypes, str):
            return [self.clauseTypes]
        return list(self.clauseTypes) or ["all"]


class ClauseAnalysisRequest(BaseModel):
    analysisType: str = "comprehensive"


# ---- feedback ----

class QueryFeedbackRequest(BaseModel):
    rating: int = Field(ge=1, le=5)
    feedback: FeedbackText
    feedbackType: str = "general"


class ClauseFeedbackRequest(BaseModel):
    rating: int = Field(ge=1, le=5)
    feedback: Optional[FeedbackText] = None
    accuracy: Optional[int] = Field(default=None, ge=1, le=5)
    relevance: Optional[int] = Field(default=None, ge=1, le=5)
    completeness: Optional[int] = Field(default=None, ge=1, le=5)


class DocumentFeedbackRequest(BaseModel):
    rating: int = Field(ge=1, le=5)
    feedback: Optional[FeedbackText] = None
    aspect: str = "overall"


# ---- deletion ----

class MultipleDeleteRequest(BaseModel):
    documentIds: List[str] = Field(min_length=1, max_length=50)


class CategoryDeleteRequest(BaseModel):
    confirm: bool = False


# ---- admin ----

class AdminActionRequest(BaseModel):
    action: str
    targetId: Optional[str] = None
    reason: Optional[str] = None


def error_messages(errors) -> List[str]:
    """Flatten pydantic error dicts into one readable message per failing field."""
    messages = []
    for error in errors:
        message = error.get("msg", "Invalid value")
        if error.get("type") == "value_error":
            messages.append(message.replace("Value error, ", "", 1))
            continue
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path", "form")]
        messages.append(f"{'.'.join(location)}: {message}" if location else message)
    return messages
