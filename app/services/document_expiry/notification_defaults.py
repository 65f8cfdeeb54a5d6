import json
import threading
from typing import Iterable, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db.models import NotificationDefaultsRecord
from app.utils.errors import ConfigurationError, DatabaseError
from app.utils.logging import get_logger

logger = get_logger()


def normalize_thresholds(thresholds: Iterable) -> Tuple[int, ...]:
    """
    Validate a threshold collection and return it as a distinct, descending tuple.

    Raises:
        ConfigurationError: if the collection is empty, or holds anything other
            than non-negative integers
    """
    if thresholds is None or isinstance(thresholds, (str, bytes)):
        raise ConfigurationError("Thresholds must be a list of day offsets")

    try:
        values = list(thresholds)
    except TypeError:
        raise ConfigurationError("Thresholds must be a list of day offsets")

    if not values:
        raise ConfigurationError("At least one notification threshold is required")

    for value in values:
        # bool is an int subclass; True/False are never meant as day offsets
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigurationError(f"Invalid notification threshold: {value!r}")
        if value < 0:
            raise ConfigurationError(
                f"Notification thresholds must be non-negative, got {value}"
            )

    return tuple(sorted(set(values), reverse=True))


class NotificationDefaults:
    """
    Process-wide default day offsets for documents without explicit overrides.

    Updates replace the whole set; there is no partial merge. Readers always
    get an immutable snapshot, so a scan in progress keeps the set it started
    with.
    """

    def __init__(self, thresholds: Iterable[int]):
        self._lock = threading.Lock()
        self._thresholds = normalize_thresholds(thresholds)

    def snapshot(self) -> Tuple[int, ...]:
        with self._lock:
            return self._thresholds

    def replace(self, thresholds: Iterable[int]) -> Tuple[int, ...]:
        # Validate before taking the lock so a rejected update leaves state untouched
        normalized = normalize_thresholds(thresholds)
        with self._lock:
            self._thresholds = normalized
        return normalized


class NotificationDefaultsRepository:
    """Persists the admin-selected defaults so they survive a restart"""

    def __init__(self, db_session: Session):
        self.db = db_session

    async def load(self) -> Optional[Tuple[int, ...]]:
        """Return the persisted defaults, or None when nothing usable is stored"""
        record = self.db.execute(
            select(NotificationDefaultsRecord)
            .order_by(NotificationDefaultsRecord.id.desc())
            .limit(1)
        ).scalar_one_or_none()

        if not record:
            return None

        try:
            return normalize_thresholds(json.loads(record.thresholds))
        except (ValueError, ConfigurationError) as e:
            logger.warning(f"Ignoring malformed persisted notification defaults: {e}")
            return None

    async def save(self, thresholds: Tuple[int, ...]) -> None:
        record = self.db.execute(
            select(NotificationDefaultsRecord)
            .order_by(NotificationDefaultsRecord.id.desc())
            .limit(1)
        ).scalar_one_or_none()

        payload = json.dumps(list(thresholds))
        if record:
            record.thresholds = payload
        else:
            self.db.add(NotificationDefaultsRecord(thresholds=payload))

        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise DatabaseError(
                "Failed to persist notification defaults",
                error_code="DEFAULTS_PERSIST_FAILED",
            ) from e
