# Core modules - Database, Config, Exceptions
from .database import get_supabase_client, DocumentStore, DocumentFilter
from .config import settings
from .exceptions import (
    SchedulerException,
    ValidationError,
    DatabaseError,
    UnknownDocumentTypeError,
)

__all__ = [
    "get_supabase_client",
    "DocumentStore",
    "DocumentFilter",
    "settings",
    "SchedulerException",
    "ValidationError",
    "DatabaseError",
    "UnknownDocumentTypeError",
]
