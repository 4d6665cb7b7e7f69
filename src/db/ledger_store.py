from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from db.models import KvBlobOrm

logger = logging.getLogger(__name__)

LEDGER_KEY = "paper-trading-ledger"

Blob = dict[str, Any]


class LedgerStoreError(RuntimeError):
    pass


class LedgerStore(Protocol):
    def load(self) -> Blob | None: ...

    def save(self, blob: Blob) -> None: ...

    def clear(self) -> None: ...


class InMemoryLedgerStore(LedgerStore):
    def __init__(self, initial: Blob | None = None) -> None:
        self._payload: str | None = json.dumps(initial) if initial is not None else None
        self.save_count = 0

    def load(self) -> Blob | None:
        if self._payload is None:
            return None
        return json.loads(self._payload)

    def save(self, blob: Blob) -> None:
        self._payload = json.dumps(blob)
        self.save_count += 1

    def clear(self) -> None:
        self._payload = None


class JsonFileLedgerStore(LedgerStore):
    """JSON document keyed by namespace. Writes go to a temp file that replaces the target."""

    def __init__(self, path: Path, *, key: str = LEDGER_KEY) -> None:
        self.path = Path(path)
        self.key = key

    def load(self) -> Blob | None:
        document = self._read_document()
        blob = document.get(self.key)
        if blob is not None and not isinstance(blob, dict):
            msg = f"Ledger entry {self.key!r} in {self.path} is not an object"
            raise LedgerStoreError(msg)
        return blob

    def save(self, blob: Blob) -> None:
        document = self._read_document()
        document[self.key] = blob
        self._write_document(document)

    def clear(self) -> None:
        document = self._read_document()
        if document.pop(self.key, None) is not None:
            self._write_document(document)

    def _read_document(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                document = json.load(handle)
        except json.JSONDecodeError as exc:
            msg = f"Ledger file {self.path} is not valid JSON"
            raise LedgerStoreError(msg) from exc
        if not isinstance(document, dict):
            msg = f"Ledger file {self.path} must contain a JSON object"
            raise LedgerStoreError(msg)
        return document

    def _write_document(self, document: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Wrote ledger %s to %s", self.key, self.path)


class SqliteLedgerStore(LedgerStore):
    def __init__(self, session: Session, *, key: str = LEDGER_KEY) -> None:
        self.session = session
        self.key = key

    def load(self) -> Blob | None:
        payload = self.session.scalar(select(KvBlobOrm.payload).where(KvBlobOrm.key == self.key))
        if payload is None:
            return None
        return json.loads(payload)

    def save(self, blob: Blob) -> None:
        values = {"key": self.key, "payload": json.dumps(blob), "updated_at": datetime.now(timezone.utc)}
        stmt = sqlite_insert(KvBlobOrm).values(values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[KvBlobOrm.key],
            set_={"payload": stmt.excluded.payload, "updated_at": stmt.excluded.updated_at},
        )
        self.session.execute(stmt)
        self.session.commit()

    def clear(self) -> None:
        row = self.session.get(KvBlobOrm, self.key)
        if row is not None:
            self.session.delete(row)
            self.session.commit()


def build_ledger_store(path: Path, *, key: str = LEDGER_KEY) -> LedgerStore:
    """`.db`/`.sqlite` paths get a SQLite store, anything else a JSON file."""
    if path.suffix in {".db", ".sqlite", ".sqlite3"}:
        from db.db import init_db

        return SqliteLedgerStore(init_db(db_file=path), key=key)
    return JsonFileLedgerStore(path, key=key)


__all__ = [
    "LEDGER_KEY",
    "InMemoryLedgerStore",
    "JsonFileLedgerStore",
    "LedgerStore",
    "LedgerStoreError",
    "SqliteLedgerStore",
    "build_ledger_store",
]
