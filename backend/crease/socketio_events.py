from flask_socketio import join_room, leave_room, emit
from crease import socketio
from flask import current_app, request
from crease.engine.match import SubmitResult, apply_toss_choice, perform_toss
from crease.exceptions import (
    CreaseError,
    InvalidPayload,
    MatchInProgress,
    MatchInvariantError,
    MatchNotStarted,
    NotTossWinner,
    PlayerNotInRoom,
    PlayerNotRegistered,
)
from crease.rooms.registry import Participant, SessionRegistry
from crease.services.stats import record_completed_match
from dataclasses import dataclass, field
from functools import partial, wraps
from typing import Any, Callable, Dict, Optional
import random
import threading


NAMESPACE = '/ws'
EXTENSION_KEY = 'crease'


@dataclass
class Lobby:
    """Per-app coordinator state: the registry plus who is on which socket.

    ``names`` only remembers display names of players that are connected or
    seated somewhere; seats themselves live in the registry.
    """
    registry: SessionRegistry
    rng: random.Random = field(default_factory=random.Random)
    recorder: Callable[..., Any] = record_completed_match
    sid_to_player: Dict[str, str] = field(default_factory=dict)
    names: Dict[str, str] = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock)

    def forget_if_idle(self, player_id: str) -> None:
        with self.lock:
            if player_id in self.sid_to_player.values():
                return
        if self.registry.find_room_of(player_id) is not None:
            return
        with self.lock:
            self.names.pop(player_id, None)


def _lobby() -> Lobby:
    return current_app.extensions[EXTENSION_KEY]


def get_registry() -> SessionRegistry:
    return _lobby().registry


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _channel(room_id: str) -> str:
    return f"room:{room_id}"


def _room_payload(room) -> Dict[str, Any]:
    with room.lock:
        return room.to_dict()


def _broadcast_rooms() -> None:
    socketio.emit('rooms.list', get_registry().list_rooms(), namespace=NAMESPACE)


def _reports_errors(handler):
    """Turn domain errors into room.error for the originating connection only."""
    @wraps(handler)
    def wrapper(data=None):
        try:
            return handler(data if isinstance(data, dict) else {})
        except CreaseError as exc:
            current_app.logger.info(f"[{handler.__name__}] rejected: {exc}")
            emit('room.error', {'message': str(exc), 'kind': exc.kind})
    return wrapper


# ---- identity ----

def _register(player_id: str, display_name: Optional[str]) -> Participant:
    """Bind this socket to ``player_id``.

    Returns a fresh Participant for this connection; the registry decides
    whether it becomes a new seat or reconnects an existing one.
    """
    lobby = _lobby()
    sid = _get_sid()
    with lobby.lock:
        lobby.sid_to_player[sid] = player_id
        if display_name:
            lobby.names[player_id] = display_name
        name = lobby.names.setdefault(player_id, player_id)
    return Participant(id=player_id, display_name=name, connection_id=sid)


def _current_player_id() -> str:
    player_id = _lobby().sid_to_player.get(_get_sid())
    if not player_id:
        raise PlayerNotRegistered()
    return player_id


def _current_room_id(player_id: str) -> str:
    room_id = get_registry().find_room_of(player_id)
    if room_id is None:
        raise PlayerNotInRoom(player_id)
    return room_id


def _resolve_participant(payload) -> Participant:
    """The participant acting on this connection.

    A payload carrying an ``id`` registers the connection on the fly; it
    must agree with any earlier registration.
    """
    lobby = _lobby()
    player_id = lobby.sid_to_player.get(_get_sid())
    if isinstance(payload, dict) and payload.get('id'):
        claimed = str(payload['id'])
        if player_id is not None and claimed != player_id:
            raise InvalidPayload('Player does not match the registered connection')
        if player_id is None:
            return _register(claimed, payload.get('displayName') or payload.get('username'))
    if player_id is None:
        raise PlayerNotRegistered()
    with lobby.lock:
        name = lobby.names.get(player_id, player_id)
    return Participant(id=player_id, display_name=name, connection_id=_get_sid())


# ---- handlers ----

def handle_connect(auth=None):
    emit('connected', {'message': f'Connected to {NAMESPACE}'})


@_reports_errors
def handle_register(data):
    player_id = data.get('id')
    if not player_id:
        raise InvalidPayload('Player id is required')
    participant = _register(str(player_id), data.get('displayName') or data.get('username'))
    emit('player.registered', participant.to_dict())
    current_app.logger.info(f"[register] player={participant.id} sid={_get_sid()}")

    registry = get_registry()
    room = registry.mark_reconnected(participant.id, _get_sid())
    if room is None:
        return
    join_room(_channel(room.id))
    emit('room.joined', _room_payload(room))
    _announce_reconnect(room, participant.id)


def _announce_reconnect(room, player_id: str) -> None:
    """Tell the room a seated player is back and catch their socket up."""
    with room.lock:
        snapshot = room.match.snapshot() if room.match is not None else None
    current_app.logger.info(f"[reconnect] player={player_id} room={room.id}")
    socketio.emit('player.reconnected', {'playerId': player_id}, to=_channel(room.id), namespace=NAMESPACE)
    if snapshot is not None:
        emit('match.state', snapshot)


@_reports_errors
def handle_rooms_list(data):
    emit('rooms.list', get_registry().list_rooms())


@_reports_errors
def handle_room_create(data):
    participant = _resolve_participant(data.get('host'))
    room = get_registry().create_room(data.get('name'), participant)
    join_room(_channel(room.id))
    current_app.logger.info(f"[room-create] room={room.id} name={room.name} host={participant.id}")
    emit('room.created', _room_payload(room))
    _broadcast_rooms()


@_reports_errors
def handle_room_join(data):
    room_id = data.get('roomId') or data.get('room_id')
    if not room_id:
        raise InvalidPayload('roomId is required')
    participant = _resolve_participant(data.get('player'))
    room_id = str(room_id).strip().upper()
    registry = get_registry()
    rejoining = registry.find_room_of(participant.id) == room_id
    room = registry.join_room(room_id, participant)
    join_room(_channel(room.id))
    payload = _room_payload(room)
    current_app.logger.info(f"[room-join] room={room.id} player={participant.id} rejoin={rejoining}")
    emit('room.joined', payload)
    if rejoining:
        _announce_reconnect(room, participant.id)
    socketio.emit('room.updated', payload, to=_channel(room.id), namespace=NAMESPACE)
    _broadcast_rooms()


@_reports_errors
def handle_room_leave(data):
    player_id = _current_player_id()
    registry = get_registry()
    room_id = registry.find_room_of(player_id)
    if room_id is None:
        return
    room = registry.leave_room(room_id, player_id)
    leave_room(_channel(room_id))
    left = {'playerId': player_id, 'roomClosed': room is None}
    current_app.logger.info(f"[room-leave] room={room_id} player={player_id} closed={room is None}")
    emit('player.left', left)
    socketio.emit('player.left', left, to=_channel(room_id), namespace=NAMESPACE)
    if room is not None:
        socketio.emit('room.updated', _room_payload(room), to=_channel(room_id), namespace=NAMESPACE)
    _broadcast_rooms()


@_reports_errors
def handle_room_reset(data):
    player_id = _current_player_id()
    room = get_registry().reset_room(_current_room_id(player_id))
    socketio.emit('room.updated', _room_payload(room), to=_channel(room.id), namespace=NAMESPACE)
    _broadcast_rooms()


@_reports_errors
def handle_toss_request(data):
    player_id = _current_player_id()
    room_id = _current_room_id(player_id)
    lobby = _lobby()
    with lobby.registry.locked(room_id) as room:
        if room.match_in_progress:
            raise MatchInProgress(room_id)
        # A toss awaiting its choice stands; repeat requests get the same winner
        winner = room.member(room.toss_winner_id) if room.toss_winner_id else None
        repeated = winner is not None
        if winner is None:
            winner = perform_toss(room, lobby.rng)
            room.toss_winner_id = winner.id
        payload = {'winner': winner.to_dict()}
    current_app.logger.info(f"[toss] room={room_id} winner={winner.id} repeated={repeated}")
    socketio.emit('toss.result', payload, to=_channel(room_id), namespace=NAMESPACE)


@_reports_errors
def handle_toss_choice(data):
    player_id = _current_player_id()
    room_id = _current_room_id(player_id)
    lobby = _lobby()
    cfg = current_app.config
    with lobby.registry.locked(room_id) as room:
        if room.match_in_progress:
            raise MatchInProgress(room_id)
        if room.toss_winner_id != player_id:
            raise NotTossWinner(player_id)
        engine = apply_toss_choice(
            room, player_id, data.get('choice'),
            total_overs=int(cfg.get('TOTAL_OVERS', 5)),
            max_wickets=int(cfg.get('MAX_WICKETS', 10)),
            rng=lobby.rng,
            extra_probability=float(cfg.get('EXTRA_PROBABILITY', 0.05)),
        )
        room.match = engine
        room.toss_winner_id = None
        snapshot = engine.snapshot()

    channel = _channel(room_id)
    choice = str(data.get('choice')).strip().lower()
    current_app.logger.info(f"[toss-choice] room={room_id} player={player_id} choice={choice}")
    socketio.emit('toss.choiceResult', {
        'choice': choice,
        'battingId': snapshot['battingId'],
        'bowlingId': snapshot['bowlingId'],
    }, to=channel, namespace=NAMESPACE)
    socketio.emit('match.started', snapshot, to=channel, namespace=NAMESPACE)
    _broadcast_rooms()


@_reports_errors
def handle_match_action(data):
    player_id = _current_player_id()
    room_id = _current_room_id(player_id)
    _advance_match(room_id, lambda engine: engine.submit_action(player_id, data))


def handle_disconnect(reason=None):
    lobby = _lobby()
    sid = _get_sid()
    with lobby.lock:
        player_id = lobby.sid_to_player.pop(sid, None)
    if not player_id:
        return
    registry = lobby.registry
    room = registry.mark_disconnected(player_id, connection_id=sid)
    if room is None:
        lobby.forget_if_idle(player_id)
        return
    current_app.logger.info(f"[disconnect] player={player_id} room={room.id} reason={reason}")
    socketio.emit('player.disconnected', {'playerId': player_id}, to=_channel(room.id), namespace=NAMESPACE)
    registry.schedule_disconnect_expiry(room.id, player_id)


# ---- match plumbing ----

def _advance_match(room_id: str, step: Callable[[Any], SubmitResult]) -> Optional[SubmitResult]:
    """Run one engine transition under the room lock, then broadcast it.

    The snapshot is taken inside the lock so both players see the same
    state for a delivery. A broken invariant ends this room's match only.
    """
    lobby = _lobby()
    finished = None
    snapshot = None
    with lobby.registry.locked(room_id) as room:
        engine = room.match
        if engine is None:
            raise MatchNotStarted(room_id)
        try:
            outcome = step(engine)
        except MatchInvariantError as exc:
            room.match = None
            current_app.logger.exception(f"[match-abort] room={room_id}: {exc}")
            outcome = None
        else:
            if outcome.delivery is not None:
                snapshot = engine.snapshot()
            if outcome.completed:
                names = {p.id: p.display_name for p in (engine.state.team_a, engine.state.team_b)}
                finished = {
                    'result': engine.state.result,
                    'final_scores': engine.final_scores(),
                    'participant_ids': engine.participant_ids,
                    'names': names,
                    'room_name': room.name,
                    'total_overs': engine.state.total_overs,
                }

    channel = _channel(room_id)
    if outcome is None:
        socketio.emit('room.error', {'message': 'Match aborted after an internal error', 'kind': 'internal'},
                      to=channel, namespace=NAMESPACE)
        _broadcast_rooms()
        return None

    if outcome.first_intent and outcome.delivery is None:
        _arm_synthesis(room_id, outcome.delivery_seq)

    if snapshot is not None:
        delivery = outcome.delivery
        current_app.logger.info(f"[delivery] room={room_id} seq={outcome.delivery_seq} ball={delivery.notation}")
        socketio.emit('match.state', snapshot, to=channel, namespace=NAMESPACE)
    if finished is not None:
        _finish_match(room_id, snapshot, finished)
    return outcome


def _finish_match(room_id: str, snapshot: Dict[str, Any], finished: Dict[str, Any]) -> None:
    result = finished['result']
    current_app.logger.info(f"[match-over] room={room_id} {result.summary}")
    payload = dict(result.to_dict(), teamA=snapshot['teamA'], teamB=snapshot['teamB'],
                   innings=finished['final_scores'])
    socketio.emit('match.over', payload, to=_channel(room_id), namespace=NAMESPACE)
    try:
        _lobby().recorder(
            result,
            finished['final_scores'],
            finished['participant_ids'],
            names=finished['names'],
            room_name=finished['room_name'],
            total_overs=finished['total_overs'],
        )
    except Exception:
        current_app.logger.exception(f"[match-record] failed to record match for room={room_id}")
    _broadcast_rooms()


def _synthesize(delivery_seq: int) -> Callable[[Any], SubmitResult]:
    def step(engine):
        innings_before = engine.state.innings_index
        record = engine.synthesize_missing(delivery_seq)
        return SubmitResult(
            accepted=record is not None,
            delivery_seq=delivery_seq,
            delivery=record,
            innings_ended=record is not None and (engine.is_complete or engine.state.innings_index != innings_before),
            completed=record is not None and engine.is_complete,
        )
    return step


def _arm_synthesis(room_id: str, delivery_seq: int) -> None:
    app = current_app._get_current_object()
    wait = float(app.config.get('DELIVERY_WAIT_SEC', 0) or 0)
    if wait <= 0:
        return
    socketio.start_background_task(_synthesis_worker, app, room_id, delivery_seq, wait)


def _synthesis_worker(app, room_id: str, delivery_seq: int, wait: float) -> None:
    socketio.sleep(wait)
    with app.app_context():
        try:
            _advance_match(room_id, _synthesize(delivery_seq))
        except CreaseError as exc:
            app.logger.info(f"[synthesis-skip] room={room_id} delivery={delivery_seq}: {exc}")


def _on_evict(app, room_id: str, player_id: str, room) -> None:
    # Runs on the registry's timer task, outside any request
    with app.app_context():
        left = {'playerId': player_id, 'roomClosed': room is None}
        app.logger.info(f"[evict] room={room_id} player={player_id} closed={room is None}")
        socketio.emit('player.left', left, to=_channel(room_id), namespace=NAMESPACE)
        if room is not None:
            socketio.emit('room.updated', _room_payload(room), to=_channel(room_id), namespace=NAMESPACE)
        _broadcast_rooms()
        _lobby().forget_if_idle(player_id)


def register_socketio_handlers(app) -> None:
    """Bind a fresh room registry to ``app`` and register the /ws handlers."""
    cfg = app.config
    registry = SessionRegistry(
        pregame_grace=float(cfg.get('PREGAME_GRACE_SEC', 30)),
        match_grace=float(cfg.get('MATCH_GRACE_SEC', 60)),
        start_task=socketio.start_background_task,
        sleep=socketio.sleep,
        on_evict=partial(_on_evict, app),
    )
    app.extensions[EXTENSION_KEY] = Lobby(registry=registry)

    socketio.on_event('connect', handle_connect, namespace=NAMESPACE)
    socketio.on_event('disconnect', handle_disconnect, namespace=NAMESPACE)
    socketio.on_event('player.register', handle_register, namespace=NAMESPACE)
    socketio.on_event('rooms.list', handle_rooms_list, namespace=NAMESPACE)
    socketio.on_event('room.create', handle_room_create, namespace=NAMESPACE)
    socketio.on_event('room.join', handle_room_join, namespace=NAMESPACE)
    socketio.on_event('room.leave', handle_room_leave, namespace=NAMESPACE)
    socketio.on_event('room.reset', handle_room_reset, namespace=NAMESPACE)
    socketio.on_event('toss.request', handle_toss_request, namespace=NAMESPACE)
    socketio.on_event('toss.choice', handle_toss_choice, namespace=NAMESPACE)
    socketio.on_event('match.action', handle_match_action, namespace=NAMESPACE)
