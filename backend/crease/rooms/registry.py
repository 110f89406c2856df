"""
Session registry: owns every live room.

Locking:
    - ``SessionRegistry._lock`` guards the room table, the membership index
      and the disconnect timer table.
    - Each Room carries its own re-entrant lock; match transitions and
      connection-state changes happen under it.
    - Always take the registry lock before a room lock, never the reverse.

Disconnect expiry is "fire and check": the timer records a token, and when
it fires it only evicts if that token is still current and the participant
is still disconnected. A reconnect drops the token under the same locks.
"""
import itertools
import logging
import random
import string
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from crease.exceptions import (
    AlreadyInOtherRoom,
    AlreadyInRoom,
    InvalidName,
    MatchInProgress,
    RoomFull,
    RoomNotFound,
)

logger = logging.getLogger(__name__)

CONNECTED = 'connected'
DISCONNECTED = 'disconnected'

MAX_MEMBERS = 2
DEFAULT_PREGAME_GRACE_SEC = 30.0
DEFAULT_MATCH_GRACE_SEC = 60.0


@dataclass
class Participant:
    id: str
    display_name: str = ''
    connection_state: str = CONNECTED
    disconnected_at: Optional[float] = None
    connection_id: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self.connection_state == CONNECTED

    def to_dict(self):
        return {
            'id': self.id,
            'displayName': self.display_name,
            'connectionState': self.connection_state,
            'disconnectedAt': self.disconnected_at,
        }


@dataclass
class Room:
    id: str
    name: str
    host_id: str
    members: List[Participant] = field(default_factory=list)
    match: Optional[object] = None
    toss_winner_id: Optional[str] = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def member(self, participant_id: str) -> Optional[Participant]:
        for p in self.members:
            if p.id == participant_id:
                return p
        return None

    @property
    def match_in_progress(self) -> bool:
        return self.match is not None and not self.match.is_complete

    @property
    def status(self) -> str:
        if self.match is not None:
            return 'complete' if self.match.is_complete else 'playing'
        return 'ready' if len(self.members) == MAX_MEMBERS else 'waiting'

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'hostId': self.host_id,
            'players': [p.to_dict() for p in self.members],
            'createdAt': self.created_at,
            'status': self.status,
            'tossWinnerId': self.toss_winner_id,
        }


def generate_room_code(length=6):
    return ''.join(random.choices(string.ascii_uppercase + string.digits, k=length))


def _start_thread(fn, *args):
    thread = threading.Thread(target=fn, args=args, daemon=True)
    thread.start()
    return thread


class SessionRegistry:
    """Rooms, membership and disconnect timers for one server process.

    ``start_task`` and ``sleep`` default to plain threads and ``time.sleep``;
    the socket layer passes Socket.IO's ``start_background_task``/``sleep``
    so timers cooperate with whatever async mode the server runs in.
    ``on_evict(room_id, participant_id, room)`` runs after a timer evicts
    someone, outside of any lock; ``room`` is None when the room closed.
    """

    def __init__(self, pregame_grace: float = DEFAULT_PREGAME_GRACE_SEC,
                 match_grace: float = DEFAULT_MATCH_GRACE_SEC,
                 start_task: Optional[Callable] = None,
                 sleep: Optional[Callable[[float], None]] = None,
                 clock: Optional[Callable[[], float]] = None,
                 on_evict: Optional[Callable[[str, str, Optional[Room]], None]] = None):
        self.pregame_grace = pregame_grace
        self.match_grace = match_grace
        self._start_task = start_task or _start_thread
        self._sleep = sleep or time.sleep
        self._clock = clock or time.time
        self.on_evict = on_evict

        self._lock = threading.Lock()
        self._rooms: Dict[str, Room] = {}
        self._member_index: Dict[str, str] = {}
        self._timers: Dict[Tuple[str, str], int] = {}
        self._timer_tokens = itertools.count(1)

    def __contains__(self, room_id) -> bool:
        with self._lock:
            return room_id in self._rooms

    def __len__(self) -> int:
        with self._lock:
            return len(self._rooms)

    # ---- lifecycle ----

    def create_room(self, name: str, host: Participant) -> Room:
        if not name or not str(name).strip():
            raise InvalidName(name)
        with self._lock:
            existing = self._member_index.get(host.id)
            if existing is not None:
                raise AlreadyInRoom(host.id, existing)

            code = generate_room_code()
            while code in self._rooms:
                logger.warning('Room code collision detected, regenerating: %s', code)
                code = generate_room_code()

            host.connection_state = CONNECTED
            host.disconnected_at = None
            room = Room(id=code, name=str(name).strip(), host_id=host.id, members=[host])
            self._rooms[code] = room
            self._member_index[host.id] = code

        logger.info('Created room %s (%s) for host %s', code, room.name, host.id)
        return room

    def join_room(self, room_id: str, participant: Participant) -> Room:
        """Seat a participant, or reconnect one who already holds a seat here.

        A returning member keeps their seat object; only its connection
        fields change and any pending disconnect expiry is dropped.
        """
        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                raise RoomNotFound(room_id)
            existing = self._member_index.get(participant.id)
            if existing is not None and existing != room_id:
                raise AlreadyInOtherRoom(participant.id, existing)

            with room.lock:
                member = room.member(participant.id)
                if member is not None:
                    self._reconnect(room, member, participant.connection_id)
                    return room
                if len(room.members) >= MAX_MEMBERS:
                    raise RoomFull(room_id)
                participant.connection_state = CONNECTED
                participant.disconnected_at = None
                room.members.append(participant)
                self._member_index[participant.id] = room_id

        logger.info('Player %s joined room %s', participant.id, room_id)
        return room

    def leave_room(self, room_id: str, participant_id: str) -> Optional[Room]:
        """Remove a member.

        Returns the room, or None when the room does not exist (any more).
        """
        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                return None
            with room.lock:
                return self._remove_member(room, participant_id)

    def _remove_member(self, room: Room, participant_id: str) -> Optional[Room]:
        # Caller holds the registry lock and the room lock
        member = room.member(participant_id)
        if member is None:
            return room

        room.members = [p for p in room.members if p.id != participant_id]
        if self._member_index.get(participant_id) == room.id:
            del self._member_index[participant_id]
        self._timers.pop((room.id, participant_id), None)

        room.toss_winner_id = None
        if room.match_in_progress:
            logger.info('Discarding unfinished match in room %s after %s left', room.id, participant_id)
            room.match = None

        if not room.members:
            del self._rooms[room.id]
            self._cancel_room_timers(room.id)
            room.match = None
            logger.info('Room %s closed', room.id)
            return None

        if room.host_id == participant_id:
            room.host_id = room.members[0].id
        return room

    def reset_room(self, room_id: str, force: bool = False) -> Room:
        """Drop the room's match so the same pair can toss again.

        Refuses to throw away an unfinished match unless ``force`` is set.
        """
        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                raise RoomNotFound(room_id)
            with room.lock:
                if room.match_in_progress and not force:
                    raise MatchInProgress(room_id)
                room.match = None
                room.toss_winner_id = None
        return room

    # ---- lookup ----

    def get_room(self, room_id: str) -> Room:
        with self._lock:
            room = self._rooms.get(room_id)
        if room is None:
            raise RoomNotFound(room_id)
        return room

    def find_room_of(self, participant_id: str) -> Optional[str]:
        with self._lock:
            return self._member_index.get(participant_id)

    def list_rooms(self) -> List[dict]:
        with self._lock:
            rooms = list(self._rooms.values())
            summaries = []
            for room in rooms:
                with room.lock:
                    summaries.append(room.to_dict())
        return summaries

    @contextmanager
    def locked(self, room_id: str) -> Iterator[Room]:
        """Serialized access to one room for match transitions.

        Do not call back into registry methods from inside the block; they
        take the registry lock, which must not be acquired under a room lock.
        """
        room = self.get_room(room_id)
        with room.lock:
            # Removal needs this room lock, so the room cannot close while we hold it
            if self._rooms.get(room_id) is not room:
                raise RoomNotFound(room_id)
            yield room

    # ---- connection state ----

    def mark_disconnected(self, participant_id: str, connection_id: Optional[str] = None) -> Optional[Room]:
        """Flag a member as disconnected without removing them.

        A ``connection_id`` that no longer matches the member's current
        connection is stale (they already reconnected elsewhere) and ignored.
        """
        with self._lock:
            room = self._rooms.get(self._member_index.get(participant_id, ''))
            if room is None:
                return None
            with room.lock:
                member = room.member(participant_id)
                if member is None:
                    return None
                if connection_id is not None and member.connection_id not in (None, connection_id):
                    return None
                member.connection_state = DISCONNECTED
                member.disconnected_at = self._clock()
        logger.info('Player %s disconnected from room %s', participant_id, room.id)
        return room

    def mark_reconnected(self, participant_id: str, connection_id: Optional[str] = None) -> Optional[Room]:
        with self._lock:
            room = self._rooms.get(self._member_index.get(participant_id, ''))
            if room is None:
                return None
            with room.lock:
                member = room.member(participant_id)
                if member is None:
                    return None
                self._reconnect(room, member, connection_id)
        return room

    def _reconnect(self, room: Room, member: Participant, connection_id: Optional[str]) -> None:
        # Caller holds the registry lock and the room lock
        member.connection_state = CONNECTED
        member.disconnected_at = None
        member.connection_id = connection_id
        if self._timers.pop((room.id, member.id), None) is not None:
            logger.info('Cancelled disconnect expiry for %s in room %s', member.id, room.id)

    # ---- disconnect timers ----

    def grace_for(self, room: Room) -> float:
        return self.match_grace if room.match_in_progress else self.pregame_grace

    def schedule_disconnect_expiry(self, room_id: str, participant_id: str,
                                   grace_seconds: Optional[float] = None) -> Optional[int]:
        """Arm a one-shot eviction for a disconnected member.

        Returns the timer token, or None when there is nothing to arm.
        """
        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                return None
            with room.lock:
                member = room.member(participant_id)
                if member is None or member.connected:
                    return None
                if grace_seconds is None:
                    grace_seconds = self.grace_for(room)
                token = next(self._timer_tokens)
                self._timers[(room_id, participant_id)] = token

        logger.info('Disconnect expiry for %s in room %s in %ss', participant_id, room_id, grace_seconds)
        self._start_task(self._run_expiry, room_id, participant_id, token, grace_seconds)
        return token

    def pending_expiry(self, room_id: str, participant_id: str) -> Optional[int]:
        with self._lock:
            return self._timers.get((room_id, participant_id))

    def _run_expiry(self, room_id: str, participant_id: str, token: int, delay: float) -> None:
        self._sleep(delay)
        self.expire_disconnect(room_id, participant_id, token)

    def expire_disconnect(self, room_id: str, participant_id: str, token: int) -> bool:
        """Timer callback. Evicts only if the timer is current and the member is still away."""
        with self._lock:
            if self._timers.get((room_id, participant_id)) != token:
                return False
            del self._timers[(room_id, participant_id)]
            room = self._rooms.get(room_id)
            if room is None:
                return False
            with room.lock:
                member = room.member(participant_id)
                if member is None or member.connected:
                    return False
                remaining = self._remove_member(room, participant_id)

        logger.info('Evicted %s from room %s after disconnect grace period', participant_id, room_id)
        if self.on_evict is not None:
            self.on_evict(room_id, participant_id, remaining)
        return True

    def _cancel_room_timers(self, room_id: str) -> None:
        for key in [k for k in self._timers if k[0] == room_id]:
            del self._timers[key]
