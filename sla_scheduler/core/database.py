"""
Supabase database client management.

Provides:
- Singleton Supabase client
- Static registry of monitored document types to their tables
- DocumentStore: typed find/update access used by the SLA evaluator
  and the maintenance jobs
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache
from typing import Any, Optional

from supabase import create_client, Client

from .config import settings
from .exceptions import DatabaseError, UnknownDocumentTypeError
from ..models.enums import DocumentType


logger = logging.getLogger(__name__)


# Document type -> table. Lookups outside this map fail fast.
DOCUMENT_TABLES: dict[DocumentType, str] = {
    DocumentType.MIRV: "mirvs",
    DocumentType.JOB_ORDER: "job_orders",
    DocumentType.MATERIAL_REQUISITION: "material_requisitions",
    DocumentType.GATE_PASS: "gate_passes",
    DocumentType.SCRAP_ITEM: "scrap_items",
    DocumentType.SURPLUS_ITEM: "surplus_items",
    DocumentType.RFIM: "rfims",
    DocumentType.INVENTORY_LOT: "inventory_lots",
    DocumentType.REFRESH_TOKEN: "refresh_tokens",
    DocumentType.INVENTORY_LEVEL: "inventory_levels",
}


def table_for(document_type: DocumentType) -> str:
    """Resolve the table backing a document type."""
    try:
        return DOCUMENT_TABLES[DocumentType(document_type)]
    except (KeyError, ValueError):
        raise UnknownDocumentTypeError(document_type)


class SupabaseClient:
    """
    Singleton wrapper for Supabase client.
    """

    _instance: Optional["SupabaseClient"] = None
    _client: Optional[Client] = None

    def __new__(cls) -> "SupabaseClient":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._client is None:
            if not settings.database_configured:
                raise DatabaseError(
                    "Supabase is not configured (SUPABASE_URL / SUPABASE_KEY)",
                    operation="connect"
                )
            self._client = create_client(
                settings.supabase_url,
                settings.supabase_key
            )

    @property
    def client(self) -> Client:
        """Get the Supabase client instance."""
        if self._client is None:
            raise RuntimeError("Supabase client not initialized")
        return self._client


@lru_cache
def get_supabase_client() -> SupabaseClient:
    """Get the singleton Supabase client instance."""
    return SupabaseClient()


def _to_db_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


@dataclass
class DocumentFilter:
    """
    Conjunction of column predicates.

    statuses restricts the `status` column; is_null columns must be NULL;
    lt / gt / lte / gte compare timestamps.
    """
    statuses: tuple[str, ...] = ()
    equals: dict[str, Any] = field(default_factory=dict)
    is_null: tuple[str, ...] = ()
    lt: dict[str, datetime] = field(default_factory=dict)
    gt: dict[str, datetime] = field(default_factory=dict)
    lte: dict[str, datetime] = field(default_factory=dict)
    gte: dict[str, datetime] = field(default_factory=dict)

    def apply(self, query):
        """Chain this filter onto a Supabase query builder."""
        if len(self.statuses) == 1:
            query = query.eq("status", self.statuses[0])
        elif self.statuses:
            query = query.in_("status", list(self.statuses))
        for column, value in self.equals.items():
            if value is None:
                query = query.is_(column, "null")
            else:
                query = query.eq(column, _to_db_value(value))
        for column in self.is_null:
            query = query.is_(column, "null")
        for column, value in self.lt.items():
            query = query.lt(column, _to_db_value(value))
        for column, value in self.gt.items():
            query = query.gt(column, _to_db_value(value))
        for column, value in self.lte.items():
            query = query.lte(column, _to_db_value(value))
        for column, value in self.gte.items():
            query = query.gte(column, _to_db_value(value))
        return query


class DocumentStore:
    """
    Typed access to monitored documents.

    The evaluator only ever reads qualifying documents and writes
    bookkeeping flags; maintenance jobs use the bulk operations.
    """

    def __init__(self, db: Optional[SupabaseClient] = None):
        self._db = db

    @property
    def db(self) -> SupabaseClient:
        if self._db is None:
            self._db = get_supabase_client()
        return self._db

    async def find_many(
        self,
        document_type: DocumentType,
        flt: DocumentFilter,
        columns: str = "*"
    ) -> list[dict]:
        """Return every document of a type matching the filter."""
        table = table_for(document_type)
        try:
            query = flt.apply(self.db.client.table(table).select(columns))
            response = query.execute()
        except Exception as e:
            raise DatabaseError(
                f"Failed to query {table}",
                table=table,
                operation="select",
                original_error=str(e)
            ) from e
        return response.data or []

    async def update(
        self,
        document_type: DocumentType,
        document_id: str,
        data: dict[str, Any]
    ) -> dict:
        """Update a single document by id."""
        table = table_for(document_type)
        payload = {key: _to_db_value(value) for key, value in data.items()}
        try:
            response = self.db.client.table(table).update(payload).eq(
                "id", document_id
            ).execute()
        except Exception as e:
            raise DatabaseError(
                f"Failed to update {table} {document_id}",
                table=table,
                operation="update",
                original_error=str(e)
            ) from e
        return response.data[0] if response.data else {}

    async def update_many(
        self,
        document_type: DocumentType,
        flt: DocumentFilter,
        data: dict[str, Any]
    ) -> int:
        """Update every matching document. Returns the affected count."""
        table = table_for(document_type)
        payload = {key: _to_db_value(value) for key, value in data.items()}
        try:
            response = flt.apply(self.db.client.table(table).update(payload)).execute()
        except Exception as e:
            raise DatabaseError(
                f"Failed to update {table}",
                table=table,
                operation="update",
                original_error=str(e)
            ) from e
        return len(response.data) if response.data else 0

    async def delete_many(
        self,
        document_type: DocumentType,
        flt: DocumentFilter
    ) -> int:
        """Delete every matching document. Returns the affected count."""
        table = table_for(document_type)
        try:
            response = flt.apply(self.db.client.table(table).delete()).execute()
        except Exception as e:
            raise DatabaseError(
                f"Failed to delete from {table}",
                table=table,
                operation="delete",
                original_error=str(e)
            ) from e
        return len(response.data) if response.data else 0
