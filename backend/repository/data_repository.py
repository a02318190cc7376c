"""Repository layer responsible for all database access."""

from __future__ import annotations

import random
import sqlite3
from contextlib import contextmanager
from datetime import date, timedelta
from pathlib import Path
from typing import Iterator, Optional, Sequence

from backend.domain.models import Allocation, Registrant, Room
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def _row_to_registrant(row: sqlite3.Row) -> Registrant:
    return Registrant(
        registrant_id=int(row["id"]),
        full_name=str(row["full_name"]),
        gender=str(row["gender"]),
        date_of_birth=date.fromisoformat(str(row["date_of_birth"])),
        is_verified=bool(row["is_verified"]),
    )


def _row_to_room(row: sqlite3.Row) -> Room:
    return Room(
        room_id=int(row["id"]),
        name=str(row["name"]),
        gender=str(row["gender"]),
        capacity=int(row["capacity"]),
        is_active=bool(row["is_active"]),
    )


def _row_to_allocation(row: sqlite3.Row) -> Allocation:
    return Allocation(
        allocation_id=int(row["id"]),
        registrant_id=int(row["registrant_id"]),
        room_id=int(row["room_id"]),
        allocated_at=str(row["allocated_at"]),
        allocated_by=row["allocated_by"],
    )


def _placeholders(values: Sequence[object]) -> str:
    return ",".join("?" for _ in values)


class DataRepository:
    """Encapsulates SQLite access so allocation logic stays storage-agnostic.

    Read helpers accept an optional ``conn`` so the allocation writer can run
    them inside its own ``transaction()`` and see the state it is about to
    change.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(
            self._db_path,
            timeout=self._settings.database_timeout_seconds,
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def _session(self, conn: Optional[sqlite3.Connection] = None) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
            return
        connection = self._connect()
        try:
            with connection:
                yield connection
        finally:
            connection.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block under ``BEGIN IMMEDIATE``.

        The database write lock is taken before the first statement, so reads
        made inside the block cannot be invalidated by another writer before
        COMMIT.
        """
        connection = self._connect()
        connection.isolation_level = None
        try:
            connection.execute("BEGIN IMMEDIATE;")
            try:
                yield connection
            except BaseException:
                if connection.in_transaction:
                    connection.execute("ROLLBACK;")
                raise
            connection.execute("COMMIT;")
        finally:
            connection.close()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._session() as conn:
                cursor = conn.cursor()

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Registrants (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        full_name TEXT NOT NULL,
                        gender TEXT NOT NULL,
                        date_of_birth TEXT NOT NULL,
                        is_verified INTEGER NOT NULL DEFAULT 0 CHECK (is_verified IN (0,1)),
                        verified_at DATETIME,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Rooms (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL UNIQUE,
                        gender TEXT NOT NULL,
                        capacity INTEGER NOT NULL CHECK (capacity > 0),
                        is_active INTEGER NOT NULL DEFAULT 1 CHECK (is_active IN (0,1)),
                        description TEXT,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS RoomAllocations (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        registrant_id INTEGER NOT NULL UNIQUE,
                        room_id INTEGER NOT NULL,
                        allocated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        allocated_by TEXT,
                        FOREIGN KEY (registrant_id) REFERENCES Registrants(id) ON DELETE CASCADE,
                        FOREIGN KEY (room_id) REFERENCES Rooms(id) ON DELETE CASCADE
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS SystemConfig (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        description TEXT,
                        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_room_allocations_room
                    ON RoomAllocations(room_id);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_registrants_verified_gender
                    ON Registrants(is_verified, gender);
                    """
                )
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_synthetic_data(self) -> None:
        """Seed demo rooms and registrants only when both tables are empty."""
        rng = random.Random(self._settings.synthetic_random_seed)
        genders = self._settings.supported_genders
        today = date.today()
        try:
            with self._session() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT COUNT(*) AS count FROM Rooms;")
                if int(cursor.fetchone()["count"]) > 0:
                    logger.info("Synthetic data already present; skipping seed")
                    return

                rooms = [
                    (
                        f"Room {index + 1:02d}",
                        genders[index % len(genders)],
                        rng.randint(2, 6),
                    )
                    for index in range(self._settings.synthetic_room_count)
                ]
                cursor.executemany(
                    "INSERT INTO Rooms (name, gender, capacity) VALUES (?, ?, ?);",
                    rooms,
                )

                registrants = []
                for index in range(self._settings.synthetic_registrant_count):
                    age_days = rng.randint(10 * 365, 25 * 365)
                    registrants.append(
                        (
                            f"Participant {index + 1:03d}",
                            rng.choice(genders),
                            (today - timedelta(days=age_days)).isoformat(),
                            1 if rng.random() < 0.8 else 0,
                        )
                    )
                cursor.executemany(
                    """
                    INSERT INTO Registrants (full_name, gender, date_of_birth, is_verified)
                    VALUES (?, ?, ?, ?);
                    """,
                    registrants,
                )
            logger.info(
                "Synthetic seed completed | rooms=%s | registrants=%s",
                len(rooms),
                len(registrants),
            )
        except sqlite3.Error as exc:
            raise RuntimeError(f"Synthetic data seeding failed: {exc}") from exc

    def create_room(
        self,
        name: str,
        gender: str,
        capacity: int,
        is_active: bool = True,
        description: Optional[str] = None,
    ) -> int:
        with self._session() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO Rooms (name, gender, capacity, is_active, description)
                VALUES (?, ?, ?, ?, ?);
                """,
                (name, gender, capacity, 1 if is_active else 0, description),
            )
            return int(cursor.lastrowid)

    def set_room_active(self, room_id: int, is_active: bool) -> None:
        with self._session() as conn:
            conn.execute(
                "UPDATE Rooms SET is_active = ? WHERE id = ?;",
                (1 if is_active else 0, room_id),
            )

    def create_registrant(
        self,
        full_name: str,
        gender: str,
        date_of_birth: date,
        is_verified: bool = False,
    ) -> int:
        with self._session() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO Registrants (full_name, gender, date_of_birth, is_verified, verified_at)
                VALUES (?, ?, ?, ?, CASE WHEN ? = 1 THEN CURRENT_TIMESTAMP END);
                """,
                (
                    full_name,
                    gender,
                    date_of_birth.isoformat(),
                    1 if is_verified else 0,
                    1 if is_verified else 0,
                ),
            )
            return int(cursor.lastrowid)

    def set_registrant_verified(self, registrant_id: int, is_verified: bool) -> None:
        with self._session() as conn:
            conn.execute(
                """
                UPDATE Registrants
                SET is_verified = ?,
                    verified_at = CASE WHEN ? = 1 THEN CURRENT_TIMESTAMP END
                WHERE id = ?;
                """,
                (1 if is_verified else 0, 1 if is_verified else 0, registrant_id),
            )

    def get_registrant(
        self,
        registrant_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[Registrant]:
        with self._session(conn) as session:
            row = session.execute(
                """
                SELECT id, full_name, gender, date_of_birth, is_verified
                FROM Registrants
                WHERE id = ?;
                """,
                (registrant_id,),
            ).fetchone()
            return _row_to_registrant(row) if row is not None else None

    def get_room(
        self,
        room_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[Room]:
        with self._session(conn) as session:
            row = session.execute(
                "SELECT id, name, gender, capacity, is_active FROM Rooms WHERE id = ?;",
                (room_id,),
            ).fetchone()
            return _row_to_room(row) if row is not None else None

    def list_rooms(
        self,
        genders: Sequence[str],
        active_only: bool = True,
        conn: Optional[sqlite3.Connection] = None,
    ) -> list[Room]:
        """Return rooms of the given genders ordered by gender, then name."""
        if not genders:
            return []
        query = f"""
            SELECT id, name, gender, capacity, is_active
            FROM Rooms
            WHERE gender IN ({_placeholders(genders)})
        """
        if active_only:
            query += " AND is_active = 1"
        query += " ORDER BY gender ASC, name ASC, id ASC;"
        with self._session(conn) as session:
            rows = session.execute(query, tuple(genders)).fetchall()
            return [_row_to_room(row) for row in rows]

    def list_room_occupants(
        self,
        room_ids: Sequence[int],
        conn: Optional[sqlite3.Connection] = None,
    ) -> dict[int, list[Registrant]]:
        """Map each requested room id to the registrants allocated to it."""
        occupants: dict[int, list[Registrant]] = {room_id: [] for room_id in room_ids}
        if not room_ids:
            return occupants
        with self._session(conn) as session:
            rows = session.execute(
                f"""
                SELECT ra.room_id, r.id, r.full_name, r.gender, r.date_of_birth, r.is_verified
                FROM RoomAllocations AS ra
                INNER JOIN Registrants AS r ON r.id = ra.registrant_id
                WHERE ra.room_id IN ({_placeholders(room_ids)})
                ORDER BY ra.room_id ASC, ra.id ASC;
                """,
                tuple(room_ids),
            ).fetchall()
        for row in rows:
            occupants[int(row["room_id"])].append(_row_to_registrant(row))
        return occupants

    def list_unallocated_verified_registrants(
        self,
        genders: Sequence[str],
    ) -> list[Registrant]:
        if not genders:
            return []
        with self._session() as conn:
            rows = conn.execute(
                f"""
                SELECT r.id, r.full_name, r.gender, r.date_of_birth, r.is_verified
                FROM Registrants AS r
                LEFT JOIN RoomAllocations AS ra ON ra.registrant_id = r.id
                WHERE ra.id IS NULL
                  AND r.is_verified = 1
                  AND r.gender IN ({_placeholders(genders)})
                ORDER BY r.id ASC;
                """,
                tuple(genders),
            ).fetchall()
            return [_row_to_registrant(row) for row in rows]

    def get_allocation_by_registrant(
        self,
        registrant_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[Allocation]:
        with self._session(conn) as session:
            row = session.execute(
                """
                SELECT id, registrant_id, room_id, allocated_at, allocated_by
                FROM RoomAllocations
                WHERE registrant_id = ?;
                """,
                (registrant_id,),
            ).fetchone()
            return _row_to_allocation(row) if row is not None else None

    def list_allocations_by_room(
        self,
        room_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> list[Allocation]:
        with self._session(conn) as session:
            rows = session.execute(
                """
                SELECT id, registrant_id, room_id, allocated_at, allocated_by
                FROM RoomAllocations
                WHERE room_id = ?
                ORDER BY id ASC;
                """,
                (room_id,),
            ).fetchall()
            return [_row_to_allocation(row) for row in rows]

    def insert_allocation(
        self,
        conn: sqlite3.Connection,
        registrant_id: int,
        room_id: int,
        allocated_by: Optional[str],
    ) -> Allocation:
        """Insert one allocation row on the caller's open transaction."""
        cursor = conn.execute(
            """
            INSERT INTO RoomAllocations (registrant_id, room_id, allocated_by)
            VALUES (?, ?, ?);
            """,
            (registrant_id, room_id, allocated_by),
        )
        row = conn.execute(
            """
            SELECT id, registrant_id, room_id, allocated_at, allocated_by
            FROM RoomAllocations
            WHERE id = ?;
            """,
            (int(cursor.lastrowid),),
        ).fetchone()
        return _row_to_allocation(row)

    def delete_allocation_by_registrant(
        self,
        registrant_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> bool:
        with self._session(conn) as session:
            cursor = session.execute(
                "DELETE FROM RoomAllocations WHERE registrant_id = ?;",
                (registrant_id,),
            )
            return cursor.rowcount > 0

    def delete_allocations_in_rooms(
        self,
        room_ids: Sequence[int],
        conn: Optional[sqlite3.Connection] = None,
    ) -> int:
        if not room_ids:
            return 0
        with self._session(conn) as session:
            cursor = session.execute(
                f"DELETE FROM RoomAllocations WHERE room_id IN ({_placeholders(room_ids)});",
                tuple(room_ids),
            )
            return int(cursor.rowcount)

    def get_config_value(self, key: str) -> Optional[str]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT value FROM SystemConfig WHERE key = ?;",
                (key,),
            ).fetchone()
            return str(row["value"]) if row is not None else None

    def set_config_value(self, key: str, value: str, description: Optional[str] = None) -> None:
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO SystemConfig (key, value, description)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = CURRENT_TIMESTAMP;
                """,
                (key, value, description),
            )

    def get_accommodation_counts(self) -> dict[str, int]:
        """Aggregate counters used by the accommodation overview."""
        with self._session() as conn:
            row = conn.execute(
                """
                SELECT
                    (SELECT COUNT(*) FROM Registrants) AS total_registrants,
                    (SELECT COUNT(*) FROM Registrants WHERE is_verified = 1) AS verified_registrants,
                    (SELECT COUNT(*) FROM RoomAllocations) AS allocated_registrants,
                    (SELECT COUNT(*) FROM Rooms) AS total_rooms,
                    (SELECT COUNT(*) FROM Rooms WHERE is_active = 1) AS active_rooms,
                    (SELECT COALESCE(SUM(capacity), 0) FROM Rooms WHERE is_active = 1) AS total_capacity;
                """
            ).fetchone()
            return {key: int(row[key]) for key in row.keys()}

    def count_allocations(self) -> int:
        with self._session() as conn:
            row = conn.execute("SELECT COUNT(*) AS count FROM RoomAllocations;").fetchone()
            return int(row["count"])
