"""Background cleanup helpers for uploaded file retention."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from .storage import LocalFileStore, file_created_at

logger = logging.getLogger(__name__)


def cleanup_expired_files(
    store: LocalFileStore,
    *,
    retention: timedelta,
    now: datetime | None = None,
) -> int:
    """Delete stored files created longer than ``retention`` ago."""

    reference = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    store.ensure_root()
    removed = 0

    for entry in store.root.iterdir():
        try:
            if not entry.is_file():
                continue
            age = reference - file_created_at(entry.stat())
            if age > retention:
                entry.unlink()
                removed += 1
                logger.info(
                    "Deleted old file: %s (age: %d hours)",
                    entry.name,
                    round(age.total_seconds() / 3600),
                )
        except OSError:
            logger.warning("Error checking file %s", entry.name, exc_info=True)

    if removed:
        logger.info("Cleaned up %d expired file(s)", removed)
    return removed


__all__ = ["cleanup_expired_files"]
