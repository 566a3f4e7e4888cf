# src/core/tracking/store.py
"""
Хранилище GPS-фиксов (append-only).

Две реализации:
- InMemoryLocationStore: план запроса выполняется явно в Python
- PostgresLocationStore: asyncpg, DISTINCT ON для последних фиксов
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from itertools import count
from typing import Iterable, Optional

import asyncpg

from src.common.logger import log_error
from src.core.fleet.models import ensure_utc
from src.core.tracking.errors import StoreError, ValidationError
from src.core.tracking.models import LocationFix
from src.infra.database import DatabaseManager

DEFAULT_HISTORY_LIMIT = 50


def _check_limit(limit: int) -> None:
    if limit < 1:
        raise ValidationError(f"limit must be a positive integer, got {limit}")


def _bounds(
    start_time: Optional[datetime],
    end_time: Optional[datetime],
) -> tuple[Optional[datetime], Optional[datetime]]:
    start = ensure_utc(start_time) if start_time is not None else None
    end = ensure_utc(end_time) if end_time is not None else None
    if start is not None and end is not None and start > end:
        raise ValidationError("startTime must not be later than endTime")
    return start, end


class LocationStore(ABC):
    """Интерфейс хранилища GPS-фиксов."""

    name: str = "abstract"

    @abstractmethod
    async def append(self, fix: LocationFix) -> str:
        """Сохраняет фикс и возвращает его ID. Дубликаты не отсекаются."""

    @abstractmethod
    async def latest_by_bus(self, bus_id: str) -> Optional[LocationFix]:
        """Самый свежий фикс автобуса."""

    @abstractmethod
    async def history(
        self,
        bus_id: str,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> list[LocationFix]:
        """Фиксы автобуса от новых к старым, границы интервала включаются."""

    @abstractmethod
    async def history_by_trip(
        self,
        trip_id: str,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> list[LocationFix]:
        """Фиксы рейса от новых к старым."""

    @abstractmethod
    async def latest_per_bus(
        self,
        bus_ids: Iterable[str],
        since: Optional[datetime] = None,
    ) -> dict[str, LocationFix]:
        """
        Последний фикс каждого автобуса из набора.

        План: отбор по набору автобусов и timestamp >= since,
        сортировка по времени по убыванию, группировка по автобусу,
        первый элемент группы.
        """

    async def health_check(self) -> bool:
        return True


# =============================================================================
# IN-MEMORY
# =============================================================================

class InMemoryLocationStore(LocationStore):
    """Хранилище в памяти процесса с индексами по автобусу и рейсу."""

    name = "memory"

    def __init__(self) -> None:
        # (порядковый номер записи, фикс); номер разрешает равные timestamp
        self._rows: list[tuple[int, LocationFix]] = []
        self._by_bus: dict[str, list[tuple[int, LocationFix]]] = {}
        self._by_trip: dict[str, list[tuple[int, LocationFix]]] = {}
        self._seq = count(1)

    def __len__(self) -> int:
        return len(self._rows)

    async def append(self, fix: LocationFix) -> str:
        row = (next(self._seq), fix)
        self._rows.append(row)
        self._by_bus.setdefault(fix.bus_id, []).append(row)
        if fix.trip_id is not None:
            self._by_trip.setdefault(fix.trip_id, []).append(row)
        return fix.id

    @staticmethod
    def _newest_first(rows: Iterable[tuple[int, LocationFix]]) -> list[tuple[int, LocationFix]]:
        return sorted(rows, key=lambda r: (r[1].timestamp, r[0]), reverse=True)

    async def latest_by_bus(self, bus_id: str) -> Optional[LocationFix]:
        rows = self._by_bus.get(bus_id)
        if not rows:
            return None
        return max(rows, key=lambda r: (r[1].timestamp, r[0]))[1]

    async def history(
        self,
        bus_id: str,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> list[LocationFix]:
        _check_limit(limit)
        start, end = _bounds(start_time, end_time)
        rows = [
            row for row in self._by_bus.get(bus_id, [])
            if (start is None or row[1].timestamp >= start)
            and (end is None or row[1].timestamp <= end)
        ]
        return [fix for _, fix in self._newest_first(rows)[:limit]]

    async def history_by_trip(
        self,
        trip_id: str,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> list[LocationFix]:
        _check_limit(limit)
        rows = self._newest_first(self._by_trip.get(trip_id, []))
        return [fix for _, fix in rows[:limit]]

    async def latest_per_bus(
        self,
        bus_ids: Iterable[str],
        since: Optional[datetime] = None,
    ) -> dict[str, LocationFix]:
        wanted = set(bus_ids)
        threshold = ensure_utc(since) if since is not None else None

        # 1. отбор
        matched = [
            row for bus_id in wanted for row in self._by_bus.get(bus_id, [])
            if threshold is None or row[1].timestamp >= threshold
        ]
        # 2. сортировка по убыванию времени
        ordered = self._newest_first(matched)
        # 3-4. группировка, первый элемент группы
        latest: dict[str, LocationFix] = {}
        for _, fix in ordered:
            latest.setdefault(fix.bus_id, fix)
        return latest


# =============================================================================
# POSTGRESQL
# =============================================================================

_FIX_COLUMNS = "id, bus_id, trip_id, latitude, longitude, speed, heading, recorded_at"

_STORE_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
)


class PostgresLocationStore(LocationStore):
    """Хранилище фиксов в таблице locations."""

    name = "postgres"

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def append(self, fix: LocationFix) -> str:
        try:
            await self._db.execute(
                """
                INSERT INTO locations (id, bus_id, trip_id, latitude, longitude,
                                       speed, heading, recorded_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                """,
                fix.id,
                fix.bus_id,
                fix.trip_id,
                fix.latitude,
                fix.longitude,
                fix.speed,
                fix.heading,
                fix.timestamp,
            )
        except _STORE_ERRORS as e:
            await log_error(f"Ошибка записи фикса автобуса {fix.bus_id}: {e}")
            raise StoreError(f"Failed to store location for bus {fix.bus_id}") from e
        return fix.id

    async def latest_by_bus(self, bus_id: str) -> Optional[LocationFix]:
        row = await self._fetchrow(
            f"""
            SELECT {_FIX_COLUMNS}
            FROM locations
            WHERE bus_id = $1
            ORDER BY recorded_at DESC, seq DESC
            LIMIT 1
            """,
            bus_id,
        )
        return self._row_to_fix(row) if row else None

    async def history(
        self,
        bus_id: str,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> list[LocationFix]:
        _check_limit(limit)
        start, end = _bounds(start_time, end_time)
        rows = await self._fetch(
            f"""
            SELECT {_FIX_COLUMNS}
            FROM locations
            WHERE bus_id = $1
              AND ($2::timestamptz IS NULL OR recorded_at >= $2)
              AND ($3::timestamptz IS NULL OR recorded_at <= $3)
            ORDER BY recorded_at DESC, seq DESC
            LIMIT $4
            """,
            bus_id,
            start,
            end,
            limit,
        )
        return [self._row_to_fix(row) for row in rows]

    async def history_by_trip(
        self,
        trip_id: str,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> list[LocationFix]:
        _check_limit(limit)
        rows = await self._fetch(
            f"""
            SELECT {_FIX_COLUMNS}
            FROM locations
            WHERE trip_id = $1
            ORDER BY recorded_at DESC, seq DESC
            LIMIT $2
            """,
            trip_id,
            limit,
        )
        return [self._row_to_fix(row) for row in rows]

    async def latest_per_bus(
        self,
        bus_ids: Iterable[str],
        since: Optional[datetime] = None,
    ) -> dict[str, LocationFix]:
        ids = list(set(bus_ids))
        if not ids:
            return {}
        threshold = ensure_utc(since) if since is not None else None
        rows = await self._fetch(
            f"""
            SELECT DISTINCT ON (bus_id) {_FIX_COLUMNS}
            FROM locations
            WHERE bus_id = ANY($1::text[])
              AND ($2::timestamptz IS NULL OR recorded_at >= $2)
            ORDER BY bus_id, recorded_at DESC, seq DESC
            """,
            ids,
            threshold,
        )
        return {row["bus_id"]: self._row_to_fix(row) for row in rows}

    async def health_check(self) -> bool:
        return await self._db.health_check()

    async def _fetch(self, query: str, *args) -> list:
        try:
            return await self._db.fetch(query, *args)
        except _STORE_ERRORS as e:
            await log_error(f"Ошибка чтения фиксов: {e}")
            raise StoreError("Failed to read locations") from e

    async def _fetchrow(self, query: str, *args):
        try:
            return await self._db.fetchrow(query, *args)
        except _STORE_ERRORS as e:
            await log_error(f"Ошибка чтения фиксов: {e}")
            raise StoreError("Failed to read locations") from e

    def _row_to_fix(self, row) -> LocationFix:
        """Конвертирует строку БД в модель LocationFix."""
        return LocationFix(
            id=row["id"],
            bus_id=row["bus_id"],
            trip_id=row["trip_id"],
            latitude=row["latitude"],
            longitude=row["longitude"],
            speed=row["speed"],
            heading=row["heading"],
            timestamp=row["recorded_at"],
        )
