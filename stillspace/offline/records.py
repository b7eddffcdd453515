"""
Meditation sessions recorded while offline, and their background sync.

Records are kept in a JSON file written atomically (tmp file, then
replace). A sync event posts them to the session API oldest first; each
record is removed only once its own post has succeeded.
"""
import asyncio
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from stillspace.core.config import StillSpaceConfig
from stillspace.core.errors import NetworkError
from stillspace.fetch.models import RequestInfo
from stillspace.fetch.network import Fetcher
from stillspace.utils.logger import get_logger

logger = get_logger("offline.records")


class MeditationRecord(BaseModel):
    """A finished (or abandoned) meditation session."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Local record id")
    duration: int = Field(ge=0, description="Session length in seconds")
    type: Literal["timer", "breathe", "guided"] = Field(description="Which practice produced the session")
    completed: int = Field(default=1, description="1 if the session ran to the end")
    date: datetime = Field(default_factory=datetime.now, description="When the session ended")

    def api_payload(self) -> dict:
        """Body accepted by the session-create endpoint."""
        return {"duration": self.duration, "type": self.type, "completed": self.completed}


class OfflineRecordStore:
    """Pending records persisted to a single JSON file."""

    def __init__(self, path):
        self.path = Path(path)

    def load(self) -> List[MeditationRecord]:
        if not self.path.exists():
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return [MeditationRecord.model_validate(item) for item in data.get("records", [])]

    def _save(self, records: List[MeditationRecord]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        payload = {"records": [r.model_dump(mode="json") for r in records]}
        tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        tmp.replace(self.path)

    def add(self, record: MeditationRecord) -> MeditationRecord:
        records = self.load()
        records.append(record)
        self._save(records)
        logger.info(f"Stored offline record {record.id} ({record.type}, {record.duration}s)")
        return record

    def remove(self, record_id: str) -> bool:
        records = self.load()
        kept = [r for r in records if r.id != record_id]
        if len(kept) == len(records):
            return False
        self._save(kept)
        return True

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()

    def __len__(self) -> int:
        return len(self.load())


@dataclass
class SyncReport:
    tag: str
    attempted: int = 0
    synced: int = 0
    remaining: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "tag": self.tag,
            "attempted": self.attempted,
            "synced": self.synced,
            "remaining": self.remaining,
            "errors": list(self.errors),
        }


class RecordSyncer:
    """Posts pending records to the upstream session API."""

    def __init__(self, store: OfflineRecordStore, fetcher: Fetcher, config: StillSpaceConfig):
        self.store = store
        self.fetcher = fetcher
        self.config = config
        self._lock = asyncio.Lock()

    def _request_for(self, record: MeditationRecord) -> RequestInfo:
        return RequestInfo.for_path(
            self.config.origin,
            self.config.records_sync_path,
            method="POST",
            headers={"content-type": "application/json"},
            body=json.dumps(record.api_payload()).encode("utf-8"),
        )

    async def sync(self, tag: Optional[str] = None) -> SyncReport:
        """Send every pending record; errors end up in the report, not raised."""
        report = SyncReport(tag=tag or self.config.records_sync_tag)
        async with self._lock:
            try:
                records = self.store.load()
            except (OSError, ValueError) as e:
                logger.error(f"Could not read offline records: {e}")
                report.errors.append(f"load: {e}")
                return report

            for record in records:
                report.attempted += 1
                try:
                    response = await self.fetcher.fetch(self._request_for(record))
                except NetworkError as e:
                    report.errors.append(f"{record.id}: {e.message}")
                    logger.warning(f"Record sync stopped, network unavailable: {e.message}")
                    break
                if not response.ok:
                    report.errors.append(f"{record.id}: HTTP {response.status}")
                    logger.warning(f"Record {record.id} rejected with HTTP {response.status}")
                    continue
                self.store.remove(record.id)
                report.synced += 1

            report.remaining = len(self.store)

        if report.synced:
            logger.info(f"Synced {report.synced} offline record(s), {report.remaining} remaining")
        return report
