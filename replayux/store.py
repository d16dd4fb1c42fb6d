from __future__ import annotations
import logging
from typing import List, Optional

import redis

from . import config
from .events import SessionDoc, SessionSummary, UploadBatch

log = logging.getLogger(__name__)

SESSION_KEY = "session:{}"
INDEX_KEY = "sessions"


def connect() -> redis.Redis:
    return redis.Redis(host=config.REDIS_HOST, port=config.REDIS_PORT, db=config.REDIS_DB, decode_responses=False)


class SessionStore:
    """
    Session documents in redis, one JSON value per session id plus an index set.
    Repeat uploads for the same id merge: arrays append in arrival order,
    device dimensions take the latest non-empty value.
    """

    def __init__(self, r: redis.Redis):
        self.r = r

    def ingest(self, batch: UploadBatch) -> SessionDoc:
        key = SESSION_KEY.format(batch.session_id)
        try:
            existing = self.get(batch.session_id)
        except ValueError as e:
            # unreadable document: start over from this batch
            log.warning("session %s unreadable, replacing: %s", batch.session_id, e)
            existing = None
        if existing is None:
            doc = SessionDoc.model_validate(batch.model_dump())
        else:
            doc = existing.merge(batch)
        self.r.set(key, doc.model_dump_json(by_alias=True, exclude_none=True))
        self.r.sadd(INDEX_KEY, batch.session_id)
        log.info("saved session %s: %d frames, %d taps, %d scrolls, %d navigations (batch +%d frames)",
                 doc.session_id, len(doc.frames), len(doc.taps), len(doc.scrolls),
                 len(doc.navigations), len(batch.frames))
        return doc

    def get(self, session_id: str) -> Optional[SessionDoc]:
        raw = self.r.get(SESSION_KEY.format(session_id))
        if raw is None:
            return None
        return SessionDoc.model_validate_json(raw)

    def ids(self) -> List[str]:
        out = []
        for sid in self.r.smembers(INDEX_KEY):
            out.append(sid.decode("utf-8") if isinstance(sid, bytes) else sid)
        return sorted(out)

    def _read(self, session_id: str) -> Optional[SessionDoc]:
        try:
            return self.get(session_id)
        except ValueError as e:
            log.warning("session %s unreadable, skipping: %s", session_id, e)
            return None

    def all(self) -> List[SessionDoc]:
        """Every readable session; unreadable documents are skipped."""
        docs = []
        for sid in self.ids():
            doc = self._read(sid)
            if doc is not None:
                docs.append(doc)
        return docs

    def list_sessions(self) -> List[SessionSummary]:
        rows = []
        for sid in self.ids():
            doc = self._read(sid)
            # unreadable documents still show up, with empty counts
            rows.append(doc.summary() if doc is not None else SessionDoc(session_id=sid).summary())
        return rows
