"""
Backup Service

Snapshots the four collections into a single JSON document:

    {
      "incomes": [...], "expenses": [...], "clients": [...], "invoices": [...],
      "metadata": {"timestamp": ISO8601, "version": "1.0.0", "totalRecords": N}
    }

The most recent backups are kept in memory (newest first, bounded by
`backup_history_size`) and can be restored into the remote store.

RESTORE ORDER: clients, then incomes, expenses and invoices. The store
stamps new ids on insert, so client and income references are rewritten
to the new ids as records go in. Records whose id still exists at the
store are left alone.
"""

import asyncio
import json
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.audit import AuditLogger
from src.config import EngineSettings, get_settings
from src.models.audit import AuditEventBuilder
from src.models.records import Collection, PROTECTED_FIELDS
from src.services.notifications import Notification, NotificationLevel, Notifier
from src.services.storage.interface import (
    NotFoundError,
    RecordStoreInterface,
    Row,
    require_owner,
)
from src.sync.projection import LocalProjection
from src.validation import ImportFormatInvalid, require_keys

logger = structlog.get_logger(__name__)

BACKUP_KEYS = ("incomes", "expenses", "clients", "invoices", "metadata")
RESTORE_ORDER = (
    Collection.CLIENTS,
    Collection.INCOMES,
    Collection.EXPENSES,
    Collection.INVOICES,
)


class BackupMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    timestamp: datetime
    version: str
    total_records: int = Field(..., ge=0, alias="totalRecords")


class BackupDocument(BaseModel):
    """A full snapshot of one owner's collections."""

    incomes: list[Row] = Field(default_factory=list)
    expenses: list[Row] = Field(default_factory=list)
    clients: list[Row] = Field(default_factory=list)
    invoices: list[Row] = Field(default_factory=list)
    metadata: BackupMetadata

    def rows(self, collection: Collection) -> list[Row]:
        return getattr(self, collection.value)

    def to_json(self) -> str:
        return json.dumps(self.model_dump(mode="json", by_alias=True), indent=2, ensure_ascii=False)


class BackupHistoryEntry(BaseModel):
    id: str
    timestamp: datetime
    total_records: int
    size: int


class RestoreResult(BaseModel):
    backup_id: Optional[str] = None
    restored: dict[str, int] = Field(default_factory=dict)
    skipped: dict[str, int] = Field(default_factory=dict)

    @property
    def total_restored(self) -> int:
        return sum(self.restored.values())


def backup_filename(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"finance-ai-backup-{today.isoformat()}.json"


def parse_backup(content: Union[str, bytes, dict[str, Any]]) -> BackupDocument:
    """
    Read a backup document.

    Raises:
        ImportFormatInvalid: Not JSON, a top-level key is missing, or the
            metadata is malformed
    """
    if isinstance(content, (str, bytes)):
        try:
            content = json.loads(content)
        except ValueError as e:
            raise ImportFormatInvalid("backup", reason=f"not valid JSON: {e}")

    data = require_keys("backup", content, BACKUP_KEYS)
    try:
        return BackupDocument.model_validate(data)
    except ValidationError as e:
        raise ImportFormatInvalid("backup", reason=f"malformed content: {e.error_count()} errors")


class BackupService:
    """Create, keep, export, import and restore backups for one session."""

    def __init__(
        self,
        store: RecordStoreInterface,
        projection: LocalProjection,
        owner_provider: Callable[[], Optional[str]],
        audit_logger: Optional[AuditLogger] = None,
        notifier: Optional[Notifier] = None,
        settings: Optional[EngineSettings] = None,
    ):
        self._store = store
        self._projection = projection
        self._owner_provider = owner_provider
        self._audit = audit_logger or AuditLogger()
        self._notifier = notifier
        self._settings = settings or get_settings().engine
        self._history: list[BackupHistoryEntry] = []
        self._documents: dict[str, BackupDocument] = {}
        # Backup row id -> id the store assigned when it was restored
        self._restored_ids: dict[str, str] = {}

    @property
    def history(self) -> list[BackupHistoryEntry]:
        """Kept backups, newest first."""
        return list(self._history)

    @property
    def last_backup(self) -> Optional[datetime]:
        return self._history[0].timestamp if self._history else None

    def get_backup(self, backup_id: str) -> BackupDocument:
        try:
            return self._documents[backup_id]
        except KeyError:
            raise NotFoundError(f"Backup not found: {backup_id}")

    # -------------------------------------------------------------------------
    # Create / export
    # -------------------------------------------------------------------------

    def create_backup(self, now: Optional[datetime] = None) -> BackupDocument:
        """Snapshot the local projection and remember it."""
        now = now or datetime.now()
        collections = {
            collection.value: [
                entity.model_dump(mode="json")
                for entity in self._projection.items(collection)
            ]
            for collection in Collection
        }
        total = sum(len(rows) for rows in collections.values())
        document = BackupDocument(
            **collections,
            metadata=BackupMetadata(
                timestamp=now,
                version=self._settings.backup_version,
                total_records=total,
            ),
        )

        self._remember(self._unique_id(f"backup-{int(now.timestamp() * 1000)}"), document)
        self._audit.log(AuditEventBuilder.backup_created(total))
        self._notify(
            "Backup created",
            f"{total} records saved",
            NotificationLevel.SUCCESS,
        )
        return document

    async def export_backup(self, directory: Union[str, Path], now: Optional[datetime] = None) -> Path:
        """Create a backup and write it to `directory` off the event loop."""
        document = self.create_backup(now)
        path = Path(directory) / backup_filename(document.metadata.timestamp.date())
        try:
            await asyncio.to_thread(path.write_text, document.to_json(), encoding="utf-8")
        except OSError as e:
            logger.error("backup_export_failed", path=str(path), error=str(e))
            self._notify("Backup export failed", str(e), NotificationLevel.ERROR)
            raise
        logger.info("backup_exported", path=str(path), total_records=document.metadata.total_records)
        return path

    # -------------------------------------------------------------------------
    # Import
    # -------------------------------------------------------------------------

    def import_backup(self, content: Union[str, bytes, dict[str, Any]], source: str = "upload") -> str:
        """
        Validate a backup document and keep it for restore.

        Returns:
            The id the imported backup is kept under

        Raises:
            ImportFormatInvalid: The document is malformed; nothing is kept
        """
        try:
            document = parse_backup(content)
        except ImportFormatInvalid as e:
            self._audit.log(AuditEventBuilder.import_rejected(source, str(e)))
            self._notify("Backup import failed", str(e), NotificationLevel.ERROR)
            raise

        backup_id = self._unique_id(f"backup-imported-{int(datetime.now().timestamp() * 1000)}")
        self._remember(backup_id, document)
        self._notify(
            "Backup imported",
            f"{document.metadata.total_records} records found",
            NotificationLevel.SUCCESS,
        )
        return backup_id

    async def import_backup_file(self, path: Union[str, Path]) -> str:
        path = Path(path)
        content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        return self.import_backup(content, source=path.name)

    # -------------------------------------------------------------------------
    # Restore
    # -------------------------------------------------------------------------

    async def restore_backup(self, backup_id: str) -> RestoreResult:
        """
        Write a kept backup back into the remote store.

        Raises:
            NotFoundError: Unknown backup id
            AuthenticationRequired: No active session
            StorageError: A write failed; earlier writes stay in place
        """
        document = self.get_backup(backup_id)
        owner_id = require_owner(self._owner_provider())
        result = RestoreResult(backup_id=backup_id)
        id_map: dict[str, str] = {}

        try:
            for collection in RESTORE_ORDER:
                existing = {row["id"] for row in await self._store.select(collection, owner_id)}
                restored = skipped = 0
                for row in document.rows(collection):
                    old_id = row.get("id")
                    if old_id in existing:
                        id_map[old_id] = old_id
                        skipped += 1
                        continue
                    if self._restored_ids.get(old_id) in existing:
                        id_map[old_id] = self._restored_ids[old_id]
                        skipped += 1
                        continue
                    values = self._restorable(row, id_map)
                    stored = await self._store.insert(collection, owner_id, values)
                    if old_id:
                        id_map[old_id] = stored["id"]
                        self._restored_ids[old_id] = stored["id"]
                    restored += 1
                result.restored[collection.value] = restored
                result.skipped[collection.value] = skipped
        except Exception as e:
            self._notify("Backup restore failed", str(e), NotificationLevel.ERROR)
            raise
        finally:
            for collection in Collection:
                self._projection.invalidate(collection)
                self._projection.schedule_refresh(collection)

        self._audit.log(AuditEventBuilder.backup_restored(result.total_restored, backup_id))
        self._notify(
            "Backup restored",
            f"{result.total_restored} records restored",
            NotificationLevel.SUCCESS,
        )
        return result

    @staticmethod
    def _restorable(row: Row, id_map: dict[str, str]) -> Row:
        values = {k: v for k, v in row.items() if k not in PROTECTED_FIELDS}
        for reference in ("client_id", "source_income_id"):
            if values.get(reference) in id_map:
                values[reference] = id_map[values[reference]]
        return values

    # -------------------------------------------------------------------------

    def _unique_id(self, base: str) -> str:
        backup_id, n = base, 1
        while backup_id in self._documents:
            backup_id = f"{base}-{n}"
            n += 1
        return backup_id

    def _remember(self, backup_id: str, document: BackupDocument) -> None:
        self._documents[backup_id] = document
        self._history.insert(0, BackupHistoryEntry(
            id=backup_id,
            timestamp=document.metadata.timestamp,
            total_records=document.metadata.total_records,
            size=len(document.to_json()),
        ))
        for dropped in self._history[self._settings.backup_history_size:]:
            self._documents.pop(dropped.id, None)
        del self._history[self._settings.backup_history_size:]

    def _notify(self, title: str, message: str, level: NotificationLevel) -> None:
        if self._notifier is not None:
            self._notifier.notify(Notification(title=title, message=message, level=level))
