"""Read model over active rooms and their current occupants."""

from __future__ import annotations

import sqlite3
from datetime import date
from typing import Optional

from backend.domain.compatibility import age_of
from backend.domain.models import Occupant, RoomSnapshot
from backend.repository.data_repository import DataRepository
from backend.utils.config import Settings, get_settings


class RoomStateService:
    """Builds room snapshots straight from storage on every call.

    Nothing is cached, so each allocator invocation sees the most recent
    committed write.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def room_snapshots(
        self,
        gender: str,
        *,
        as_of: Optional[date] = None,
        active_only: bool = True,
        conn: Optional[sqlite3.Connection] = None,
    ) -> list[RoomSnapshot]:
        """All rooms of ``gender`` (full ones included) in storage order."""
        rooms = self._repository.list_rooms([gender], active_only=active_only, conn=conn)
        occupants_by_room = self._repository.list_room_occupants(
            [room.room_id for room in rooms],
            conn=conn,
        )
        return [
            RoomSnapshot(
                room=room,
                occupants=tuple(
                    Occupant(
                        registrant_id=registrant.registrant_id,
                        age=age_of(registrant.date_of_birth, as_of),
                    )
                    for registrant in occupants_by_room.get(room.room_id, [])
                ),
            )
            for room in rooms
        ]

    def available_rooms(
        self,
        gender: str,
        *,
        as_of: Optional[date] = None,
    ) -> list[RoomSnapshot]:
        """Active rooms of ``gender`` with at least one open slot."""
        return [
            snapshot
            for snapshot in self.room_snapshots(gender, as_of=as_of)
            if snapshot.available_slots > 0
        ]

    def occupant_ages(
        self,
        room_id: int,
        *,
        as_of: Optional[date] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> list[int]:
        occupants = self._repository.list_room_occupants([room_id], conn=conn)
        return [
            age_of(registrant.date_of_birth, as_of)
            for registrant in occupants.get(room_id, [])
        ]
