from __future__ import annotations

import logging
import random
import string
import time
from typing import Optional

from pydantic import ValidationError

from ..events import Session
from .platform import PageInfo, StorageUnavailable

logger = logging.getLogger(__name__)

SESSION_ID_KEY = "analytics_session_id"
SESSION_KEY = "analytics_session"

_ALPHABET = string.ascii_lowercase + string.digits


def new_session_id(now: Optional[float] = None, rng: Optional[random.Random] = None) -> str:
    """``session_<epoch ms>_<9 random base36 chars>``"""
    now = time.time() if now is None else now
    rng = rng or random.SystemRandom()
    suffix = "".join(rng.choice(_ALPHABET) for _ in range(9))
    return f"session_{int(now * 1000)}_{suffix}"


class SessionIdentity:
    """
    Owns the tab-scoped session id.

    The id is created once per tab and read back from storage on every later call, so
    in-tab navigations and reloads keep aggregating under the same session. If storage
    is unavailable the id lives only in this object and each reload starts a new session.
    """

    def __init__(self, storage, now=time.time):
        self.storage = storage
        self._now = now
        self._memory_id: Optional[str] = None
        self.created = False
        self.persisted = True

    def _read(self, key):
        try:
            return self.storage.get_item(key)
        except (StorageUnavailable, OSError) as e:
            self._degrade(e)
            return None

    def _write(self, key, value):
        try:
            self.storage.set_item(key, value)
        except (StorageUnavailable, OSError) as e:
            self._degrade(e)

    def _degrade(self, err):
        if self.persisted:
            logger.warning("[session] storage unavailable, using in-memory id: %s", err)
        self.persisted = False

    def get_or_create_session_id(self) -> str:
        if self._memory_id is not None and not self.persisted:
            return self._memory_id
        sid = self._read(SESSION_ID_KEY)
        if sid:
            self._memory_id = sid
            return sid
        if self._memory_id is not None:
            return self._memory_id
        sid = new_session_id(self._now())
        self.created = True
        self._memory_id = sid
        self._write(SESSION_ID_KEY, sid)
        return sid

    def start(self, page: PageInfo) -> Session:
        """Return the session record, creating it on the first page of the tab."""
        sid = self.get_or_create_session_id()
        raw = None if self.created else self._read(SESSION_KEY)
        if raw:
            try:
                session = Session.model_validate_json(raw)
                if session.session_id == sid:
                    return session
            except ValidationError:
                logger.warning("[session] stored session record unreadable, rebuilding")
        params = page.query_params
        session = Session(
            session_id=sid,
            entry_page=page.path,
            referrer=page.referrer,
            utm_source=params.get("utm_source"),
            utm_medium=params.get("utm_medium"),
            utm_campaign=params.get("utm_campaign"),
        )
        self.save(session)
        return session

    def save(self, session: Session) -> None:
        self._write(SESSION_KEY, session.model_dump_json())
