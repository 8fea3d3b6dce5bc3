"""Per-client conversion session: the in-memory file record set, settings and notices."""
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from converter.conversion.models import ConversionSettings, FileRecord, FileStatus
from converter.exceptions import FileNotFound, ValidationError

logger = logging.getLogger("converter.session")


@dataclass
class Notice:
    title: str
    description: str
    variant: str = "default"  # "default" | "destructive"
    created_at: float = field(default_factory=time.time)


class ConversionSession:
    """All records selected by one client. Mutated only from the event loop."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        self.settings = ConversionSettings()
        self._records: dict[str, FileRecord] = {}
        # every id handed out, so an in-flight update never lands on a re-added file
        self._issued_ids: set[str] = set()
        self._notices: list[Notice] = []
        self.is_converting = False
        self.overall_progress: float = 0.0
        self.active_batch = None  # BatchRun currently driving is_converting/overall_progress

    # Records

    def records(self) -> list[FileRecord]:
        return list(self._records.values())

    def get(self, file_id: str) -> Optional[FileRecord]:
        return self._records.get(file_id)

    def require(self, file_id: str) -> FileRecord:
        record = self._records.get(file_id)
        if record is None:
            raise FileNotFound(f"File not found: {file_id}")
        return record

    def add(self, record: FileRecord) -> None:
        self._records[record.file_id] = record
        self._issued_ids.add(record.file_id)

    def id_taken(self, file_id: str) -> bool:
        """True for ids in use or ever used in this session, including removed ones."""
        return file_id in self._issued_ids

    def remove(self, file_id: str) -> bool:
        record = self._records.pop(file_id, None)
        if record is None:
            return False
        record.release()
        logger.info("Removed %s from session %s", file_id, self.session_id[:8])
        return True

    def reset(self) -> None:
        for record in self._records.values():
            record.release()
        self._records.clear()
        self._notices.clear()
        self.settings = ConversionSettings()
        self.is_converting = False
        self.overall_progress = 0.0
        self.active_batch = None

    def merge(self, file_id: str, **changes) -> bool:
        """Apply ``changes`` to the record with ``file_id``; no-op if it was removed."""
        record = self._records.get(file_id)
        if record is None:
            logger.debug("Ignoring update for removed file %s", file_id)
            return False
        for name, value in changes.items():
            setattr(record, name, value)
        return True

    def pending(self) -> list[FileRecord]:
        return [r for r in self._records.values() if r.status == FileStatus.PENDING]

    @property
    def all_finished(self) -> bool:
        return bool(self._records) and all(r.status.is_terminal for r in self._records.values())

    # Settings

    def update_settings(self, settings: ConversionSettings, apply_to_all: bool = False) -> int:
        self.settings = settings
        if not apply_to_all:
            return 0
        applied = 0
        for record in self.pending():
            record.settings = settings
            applied += 1
        self.notify("Settings Applied", "The current settings have been applied to all uploaded images.")
        return applied

    def update_file_settings(self, file_id: str, settings: ConversionSettings) -> FileRecord:
        record = self.require(file_id)
        if record.status != FileStatus.PENDING:
            raise ValidationError(f"Settings of {record.filename} can no longer change (status={record.status.value})")
        record.settings = settings
        return record

    # Notices

    def notify(self, title: str, description: str, variant: str = "default") -> None:
        self._notices.append(Notice(title, description, variant))

    def drain_notices(self) -> list[Notice]:
        notices, self._notices = self._notices, []
        return notices


class SessionStore:
    def __init__(self):
        self._sessions: dict[str, ConversionSession] = {}

    def get_or_create(self, session_id: str) -> ConversionSession:
        session = self._sessions.get(session_id)
        if session is None:
            session = ConversionSession(session_id)
            self._sessions[session_id] = session
            logger.info("Created session %s", session_id[:8])
        return session

    def discard(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            session.reset()


# Singleton
_session_store: Optional[SessionStore] = None


def get_session_store() -> SessionStore:
    global _session_store
    if _session_store is None:
        _session_store = SessionStore()
    return _session_store
