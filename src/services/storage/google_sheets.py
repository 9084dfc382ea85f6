"""
Google Sheets Remote Store

DESIGN DECISION: Google Sheets is used as the persistent backend because:
1. Non-technical users can view their records directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (we're fine for a small business)
- No transactions (the engine never needs multi-row atomicity)
- Limited query capabilities (we filter in Python)

Each collection lives in its own worksheet with one row per record and one
column per entity field. All cells are strings; empty cells read back as
absent fields.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

import gspread
from gspread.utils import rowcol_to_a1
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.config import GoogleSheetsSettings, get_settings
from src.models.records import ENTITY_MODELS, Collection
from src.services.storage.interface import (
    AuthenticationRequired,
    ConnectionError,
    NotFoundError,
    RecordStoreInterface,
    Row,
    StorageError,
    require_owner,
)


def columns_for(collection: Collection) -> list[str]:
    """Worksheet header for a collection, in entity field order."""
    fields = list(ENTITY_MODELS[collection].model_fields)
    # Identity first so lookups only need column A
    head = ["id", "owner_id", "created_at", "updated_at"]
    return head + [f for f in fields if f not in head]


write_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_not_exception_type((NotFoundError, AuthenticationRequired)),
    reraise=True,
)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
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

    def get_sheet(self, collection: Collection) -> gspread.Worksheet:
        """Get or create the worksheet backing a collection."""
        spreadsheet = self.get_spreadsheet()
        title = self._settings.sheet_name_for(collection.value)
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            header = columns_for(collection)
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=1000,
                cols=len(header),
            )
            sheet.append_row(header)
        return sheet


class GoogleSheetsRecordStore(RecordStoreInterface):
    """
    Google Sheets implementation of the remote store.

    gspread is blocking, so every sheet operation runs in a worker thread
    to keep the event loop responsive.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_cells(self, collection: Collection, row: Row) -> list[str]:
        cells = []
        for column in columns_for(collection):
            value = row.get(column)
            if value is None:
                cells.append("")
            elif hasattr(value, "isoformat"):
                cells.append(value.isoformat())
            elif hasattr(value, "value"):
                cells.append(str(value.value))
            else:
                cells.append(str(value))
        return cells

    def _cells_to_row(self, collection: Collection, cells: list[str]) -> Row:
        row = {}
        for index, column in enumerate(columns_for(collection)):
            # Handle short rows gracefully
            value = cells[index] if index < len(cells) else ""
            if value != "":
                row[column] = value
        return row

    def _read_all(self, collection: Collection) -> list[tuple[int, Row]]:
        """All data rows with their 1-based sheet index (row 1 is header)."""
        sheet = self._client.get_sheet(collection)
        values = sheet.get_all_values()[1:]
        return [
            (index, self._cells_to_row(collection, cells))
            for index, cells in enumerate(values, start=2)
            if cells and cells[0]
        ]

    def _find(self, collection: Collection, owner: str, row_id: str) -> tuple[int, Row]:
        for index, row in self._read_all(collection):
            if row.get("id") == row_id and row.get("owner_id") == owner:
                return index, row
        raise NotFoundError(f"{collection.value} row not found: {row_id}")

    def _has_row(self, collection: Collection, row_id: str) -> bool:
        return any(row.get("id") == row_id for _, row in self._read_all(collection))

    @write_retry
    async def _append(self, collection: Collection, row: Row, attempts: list[int]) -> None:
        attempts.append(1)

        def _append_once() -> None:
            # An earlier attempt may have landed without a response
            if len(attempts) > 1 and self._has_row(collection, row["id"]):
                return
            sheet = self._client.get_sheet(collection)
            sheet.append_row(self._row_to_cells(collection, row), value_input_option="RAW")

        try:
            await asyncio.to_thread(_append_once)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to insert into {collection.value}: {e}")

    async def insert(
        self,
        collection: Collection,
        owner_id: Optional[str],
        values: Row,
    ) -> Row:
        owner = require_owner(owner_id)
        now = datetime.now(timezone.utc).isoformat()
        row = {**values, "id": str(uuid4()), "owner_id": owner,
               "created_at": now, "updated_at": now}

        await self._append(collection, row, [])
        return self._cells_to_row(collection, self._row_to_cells(collection, row))

    @write_retry
    async def update(
        self,
        collection: Collection,
        owner_id: Optional[str],
        row_id: str,
        changes: Row,
    ) -> Row:
        owner = require_owner(owner_id)

        def _update() -> Row:
            index, current = self._find(collection, owner, row_id)
            merged = {**current, **changes, "updated_at": datetime.now(timezone.utc).isoformat()}
            cells = self._row_to_cells(collection, merged)
            sheet = self._client.get_sheet(collection)
            end = rowcol_to_a1(index, len(cells))
            sheet.update(
                range_name=f"A{index}:{end}",
                values=[cells],
                value_input_option="RAW",
            )
            return self._cells_to_row(collection, cells)

        try:
            return await asyncio.to_thread(_update)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update {collection.value}/{row_id}: {e}")

    @write_retry
    async def delete(
        self,
        collection: Collection,
        owner_id: Optional[str],
        row_id: str,
    ) -> None:
        owner = require_owner(owner_id)

        def _delete() -> None:
            index, _ = self._find(collection, owner, row_id)
            self._client.get_sheet(collection).delete_rows(index)

        try:
            await asyncio.to_thread(_delete)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete {collection.value}/{row_id}: {e}")

    async def get(
        self,
        collection: Collection,
        owner_id: Optional[str],
        row_id: str,
    ) -> Optional[Row]:
        owner = require_owner(owner_id)
        try:
            _, row = await asyncio.to_thread(self._find, collection, owner, row_id)
            return row
        except NotFoundError:
            return None
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read {collection.value}/{row_id}: {e}")

    async def select(
        self,
        collection: Collection,
        owner_id: Optional[str],
        **filters: Any,
    ) -> list[Row]:
        owner = require_owner(owner_id)
        try:
            rows = await asyncio.to_thread(self._read_all, collection)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list {collection.value}: {e}")

        expected = {
            k: str(v.value) if hasattr(v, "value") else str(v)
            for k, v in filters.items()
        }
        return [
            row for _, row in rows
            if row.get("owner_id") == owner
            and all(row.get(k, "") == v for k, v in expected.items())
        ]
