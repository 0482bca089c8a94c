"""
Google Sheets Document Store

DESIGN DECISION: Google Sheets is the production backend because:
1. Users can see and export their own data directly in Sheets
2. No database setup required
3. Works from every device the user signs in on

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions (each write touches a single row)
- Limited query capabilities (we filter in Python)

Each collection is one worksheet, with a header row naming the fields.
All cells are stored as text: amounts as decimal strings, dates as
YYYY-MM-DD, timestamps as ISO-8601. Fetch functions normalise them.

gspread is blocking, so every call runs in a worker thread to keep the
event loop free.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Mapping, Optional
from uuid import uuid4

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from finance_tracker.config import GoogleSheetsSettings, get_settings
from finance_tracker.services.storage.interface import (
    CATEGORIES,
    SERVER_TIMESTAMP,
    TRANSACTIONS,
    ConnectionError,
    DocumentStoreInterface,
    NotFoundError,
    StorageError,
    row_matches,
)


logger = structlog.get_logger(__name__)


# Column layout per collection
COLUMNS = {
    TRANSACTIONS: [
        "id",
        "userId",
        "type",
        "title",
        "amount",
        "categoryId",
        "date",
        "description",
        "createdAt",
        "updatedAt",
    ],
    CATEGORIES: [
        "id",
        "userId",
        "name",
        "type",
        "createdAt",
    ],
}

# Reads only. Writes are never retried: a write whose response was lost
# may already have been applied.
_RETRY_POLICY = dict(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_not_exception_type((NotFoundError, ConnectionError)),
    reraise=True,
)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and worksheet lookup/creation.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_sheet(self, collection: str) -> gspread.Worksheet:
        """Get or create the worksheet backing a collection."""
        if collection not in COLUMNS:
            raise StorageError(f"Unknown collection: {collection}")

        spreadsheet = self.get_spreadsheet()
        title = self._settings.sheet_name_for(collection)
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=1000,
                cols=len(COLUMNS[collection]),
            )
            sheet.append_row(COLUMNS[collection])
        return sheet


class GoogleSheetsDocumentStore(DocumentStoreInterface):
    """
    Google Sheets implementation of the document store.

    One document per row; the first column is the document ID.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    # -------------------------------------------------------------------------
    # Row conversion
    # -------------------------------------------------------------------------

    @staticmethod
    def _cell(value: Any) -> str:
        if value is None:
            return ""
        if value is SERVER_TIMESTAMP:
            return datetime.now(timezone.utc).isoformat()
        if isinstance(value, datetime):
            return value.isoformat()
        if hasattr(value, "value"):  # Enum
            return str(value.value)
        return str(value)

    def _fields_to_row(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> list:
        values = dict(fields)
        values["id"] = doc_id
        return [self._cell(values.get(column)) for column in COLUMNS[collection]]

    @staticmethod
    def _row_to_doc(collection: str, row: list) -> dict:
        # Missing trailing cells and empty cells both read as None
        doc = {}
        for index, column in enumerate(COLUMNS[collection]):
            try:
                value = row[index]
            except IndexError:
                value = ""
            doc[column] = value if value != "" else None
        return doc

    def _read_all(self, collection: str) -> list[dict]:
        sheet = self._client.get_sheet(collection)
        all_rows = sheet.get_all_values()[1:]  # Skip header
        return [
            self._row_to_doc(collection, row)
            for row in all_rows
            if row and row[0]
        ]

    @staticmethod
    def _find_row_index(sheet: gspread.Worksheet, doc_id: str) -> Optional[int]:
        # Sheet rows are 1-based and row 1 is the header
        for idx, row in enumerate(sheet.get_all_values()[1:], start=2):
            if row and row[0] == doc_id:
                return idx
        return None

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    @retry(**_RETRY_POLICY)
    async def query_equal(
        self,
        collection: str,
        filters: Mapping[str, Any],
    ) -> list[dict]:
        try:
            docs = await asyncio.to_thread(self._read_all, collection)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to query {collection}: {e}")
        return [doc for doc in docs if row_matches(doc, filters)]

    @retry(**_RETRY_POLICY)
    async def query_range(
        self,
        collection: str,
        field: str,
        lower: Any,
        upper: Any,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> list[dict]:
        try:
            docs = await asyncio.to_thread(self._read_all, collection)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to query {collection}: {e}")
        return [
            doc for doc in docs
            if row_matches(doc, filters, field, lower, upper)
        ]

    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        docs = await self.query_equal(collection, {"id": doc_id})
        return docs[0] if docs else None

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def insert(self, collection: str, fields: Mapping[str, Any]) -> str:
        doc_id = uuid4().hex

        def _append() -> None:
            sheet = self._client.get_sheet(collection)
            sheet.append_row(
                self._fields_to_row(collection, doc_id, fields),
                value_input_option="RAW",
            )

        try:
            await asyncio.to_thread(_append)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to insert into {collection}: {e}")

        logger.debug("sheet_row_inserted", collection=collection, doc_id=doc_id)
        return doc_id

    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: Mapping[str, Any],
    ) -> None:
        def _update() -> None:
            sheet = self._client.get_sheet(collection)
            idx = self._find_row_index(sheet, doc_id)
            if idx is None:
                raise NotFoundError(f"{collection} document not found: {doc_id}")

            current = self._row_to_doc(collection, sheet.row_values(idx))
            current.update(fields)
            sheet.update(
                range_name=f"A{idx}",
                values=[self._fields_to_row(collection, doc_id, current)],
                value_input_option="RAW",
            )

        try:
            await asyncio.to_thread(_update)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update {collection} document: {e}")

    async def delete(self, collection: str, doc_id: str) -> None:
        def _delete() -> None:
            sheet = self._client.get_sheet(collection)
            idx = self._find_row_index(sheet, doc_id)
            if idx is None:
                raise NotFoundError(f"{collection} document not found: {doc_id}")
            sheet.delete_rows(idx)

        try:
            await asyncio.to_thread(_delete)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete {collection} document: {e}")
