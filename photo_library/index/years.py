from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .schema import PhotoRow

logger = logging.getLogger(__name__)


def load_photo_years(session: Session) -> list[int]:
    """Distinct years of captured_at (falling back to uploaded_at), newest first."""
    rows = session.execute(select(PhotoRow.captured_at, PhotoRow.uploaded_at)).all()
    years: set[int] = set()
    for captured_at, uploaded_at in rows:
        source: Optional[datetime] = captured_at or uploaded_at
        if source is not None:
            years.add(source.year)
    return sorted(years, reverse=True)


class PhotoYearCache:
    """Process-wide cache of the distinct years present in the library.

    ``invalidate`` is called after every successful ingestion; the next ``get``
    recomputes. Readers may briefly see a stale list.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._years: Optional[list[int]] = None
        self._generation = 0

    def get(self, session: Session) -> list[int]:
        with self._lock:
            if self._years is not None:
                return list(self._years)
            generation = self._generation
        years = load_photo_years(session)
        with self._lock:
            # An invalidation during the load makes this result stale; do not keep it.
            if generation == self._generation:
                self._years = years
        return list(years)

    def invalidate(self) -> None:
        with self._lock:
            self._years = None
            self._generation += 1
        logger.debug("Photo year cache invalidated")

    @property
    def is_cached(self) -> bool:
        with self._lock:
            return self._years is not None
