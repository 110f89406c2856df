import random
import string

import pytest

from crease.exceptions import (
    AlreadyInOtherRoom,
    AlreadyInRoom,
    InvalidName,
    MatchInProgress,
    RoomFull,
    RoomNotFound,
)
from crease.engine.match import apply_toss_choice
from crease.rooms.registry import CONNECTED, DISCONNECTED, Participant, SessionRegistry


class ManualTimers:
    """Collects background tasks instead of running them; tests fire them by hand."""

    def __init__(self):
        self.tasks = []

    def start(self, fn, *args):
        self.tasks.append((fn, args))

    def fire_all(self):
        tasks, self.tasks = self.tasks, []
        for fn, args in tasks:
            fn(*args)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture()
def timers():
    return ManualTimers()


@pytest.fixture()
def evictions():
    return []


@pytest.fixture()
def registry(timers, evictions):
    return SessionRegistry(
        pregame_grace=30,
        match_grace=60,
        start_task=timers.start,
        sleep=lambda seconds: None,
        clock=FakeClock(),
        on_evict=lambda room_id, pid, room: evictions.append((room_id, pid, room)),
    )


def player(pid, name=None):
    return Participant(id=pid, display_name=name or pid.upper())


def full_room(registry):
    room = registry.create_room('Nets', player('p1'))
    registry.join_room(room.id, player('p2'))
    return room


# ---- create / join / leave ----

def test_create_room(registry):
    room = registry.create_room('  Lord\'s  ', player('p1'))
    assert len(room.id) == 6
    assert set(room.id) <= set(string.ascii_uppercase + string.digits)
    assert room.name == "Lord's"
    assert room.host_id == 'p1'
    assert [p.id for p in room.members] == ['p1']
    assert room.status == 'waiting'
    assert registry.find_room_of('p1') == room.id
    assert room.id in registry


@pytest.mark.parametrize('name', ['', '   ', None])
def test_create_room_requires_a_name(registry, name):
    with pytest.raises(InvalidName):
        registry.create_room(name, player('p1'))
    assert len(registry) == 0


def test_cannot_host_two_rooms(registry):
    registry.create_room('One', player('p1'))
    with pytest.raises(AlreadyInRoom):
        registry.create_room('Two', player('p1'))


def test_join_room(registry):
    room = full_room(registry)
    assert [p.id for p in room.members] == ['p1', 'p2']
    assert room.status == 'ready'
    assert registry.find_room_of('p2') == room.id


def test_join_is_idempotent_for_a_member(registry):
    room = full_room(registry)
    again = registry.join_room(room.id, player('p2'))
    assert again is room
    assert len(room.members) == 2


def test_rejoin_after_disconnect_reconnects_the_seat(registry, timers, evictions):
    room = full_room(registry)
    seat = room.member('p2')
    registry.mark_disconnected('p2')
    registry.schedule_disconnect_expiry(room.id, 'p2')

    registry.join_room(room.id, Participant(id='p2', display_name='P2', connection_id='sid-new'))
    timers.fire_all()

    assert evictions == []
    assert room.member('p2') is seat
    assert seat.connected
    assert seat.disconnected_at is None
    assert seat.connection_id == 'sid-new'
    assert registry.pending_expiry(room.id, 'p2') is None


def test_join_errors(registry):
    room = full_room(registry)
    with pytest.raises(RoomNotFound):
        registry.join_room('NOPE00', player('p3'))
    with pytest.raises(RoomFull):
        registry.join_room(room.id, player('p3'))

    other = registry.create_room('Other', player('p4'))
    with pytest.raises(AlreadyInOtherRoom):
        registry.join_room(other.id, player('p1'))
    assert len(room.members) == 2
    assert len(other.members) == 1


def test_leave_reassigns_host(registry):
    room = full_room(registry)
    remaining = registry.leave_room(room.id, 'p1')
    assert remaining is room
    assert room.host_id == 'p2'
    assert registry.find_room_of('p1') is None


def test_last_member_leaving_closes_room(registry):
    room = registry.create_room('Solo', player('p1'))
    assert registry.leave_room(room.id, 'p1') is None
    assert room.id not in registry
    with pytest.raises(RoomNotFound):
        registry.get_room(room.id)
    assert registry.leave_room(room.id, 'p1') is None


def test_leave_discards_unfinished_match_and_toss(registry):
    room = full_room(registry)
    room.toss_winner_id = 'p1'
    room.match = apply_toss_choice(room, 'p1', 'bat')
    registry.leave_room(room.id, 'p2')
    assert room.match is None
    assert room.toss_winner_id is None
    assert room.status == 'waiting'


def test_list_rooms_in_creation_order(registry):
    ids = [registry.create_room(f'Room {i}', player(f'h{i}')).id for i in range(3)]
    summaries = registry.list_rooms()
    assert [s['id'] for s in summaries] == ids
    assert summaries[0]['players'][0]['displayName'] == 'H0'
    assert summaries[0]['hostId'] == 'h0'


def test_membership_index_stays_consistent(registry):
    rng = random.Random(7)
    pids = [f'p{i}' for i in range(6)]
    for _ in range(300):
        pid = rng.choice(pids)
        current = registry.find_room_of(pid)
        try:
            if current is not None and rng.random() < 0.4:
                registry.leave_room(current, pid)
            elif current is None and rng.random() < 0.3:
                registry.create_room('R', player(pid))
            else:
                rooms = registry.list_rooms()
                if rooms:
                    registry.join_room(rng.choice(rooms)['id'], player(pid))
        except (RoomFull, AlreadyInOtherRoom, AlreadyInRoom):
            pass

        seen = {}
        for summary in registry.list_rooms():
            assert 1 <= len(summary['players']) <= 2
            for p in summary['players']:
                assert p['id'] not in seen
                seen[p['id']] = summary['id']
        for pid_ in pids:
            assert registry.find_room_of(pid_) == seen.get(pid_)


def test_reset_room(registry):
    room = full_room(registry)
    room.toss_winner_id = 'p1'
    room.match = apply_toss_choice(room, 'p1', 'bat')
    with pytest.raises(MatchInProgress):
        registry.reset_room(room.id)

    registry.reset_room(room.id, force=True)
    assert room.match is None
    assert room.toss_winner_id is None
    with pytest.raises(RoomNotFound):
        registry.reset_room('NOPE00')


def test_locked_yields_live_room(registry):
    room = full_room(registry)
    with registry.locked(room.id) as locked:
        assert locked is room
    registry.leave_room(room.id, 'p1')
    registry.leave_room(room.id, 'p2')
    with pytest.raises(RoomNotFound):
        with registry.locked(room.id):
            pass


# ---- disconnects ----

def test_disconnect_keeps_membership(registry):
    room = full_room(registry)
    registry.mark_disconnected('p2')
    member = room.member('p2')
    assert member.connection_state == DISCONNECTED
    assert member.disconnected_at == 1000.0
    assert registry.find_room_of('p2') == room.id


@pytest.mark.parametrize('delay', [0, 10, 40])
def test_reconnect_before_expiry_keeps_the_seat(registry, timers, evictions, delay):
    room = full_room(registry)
    room.match = apply_toss_choice(room, 'p1', 'bat')
    registry.mark_disconnected('p2', 'sid-a')
    token = registry.schedule_disconnect_expiry(room.id, 'p2')
    assert token is not None
    assert registry.grace_for(room) == 60

    registry._clock.now += delay
    registry.mark_reconnected('p2', 'sid-b')
    timers.fire_all()

    assert evictions == []
    assert room.member('p2').connection_state == CONNECTED
    assert room.member('p2').connection_id == 'sid-b'
    assert registry.pending_expiry(room.id, 'p2') is None
    assert room.match is not None


def test_expiry_evicts_and_notifies(registry, timers, evictions):
    room = full_room(registry)
    registry.mark_disconnected('p1')
    registry.schedule_disconnect_expiry(room.id, 'p1')
    timers.fire_all()

    assert [p.id for p in room.members] == ['p2']
    assert room.host_id == 'p2'
    assert registry.find_room_of('p1') is None
    assert evictions == [(room.id, 'p1', room)]


def test_expiry_of_last_member_closes_room(registry, timers, evictions):
    room = registry.create_room('Solo', player('p1'))
    registry.mark_disconnected('p1')
    registry.schedule_disconnect_expiry(room.id, 'p1')
    timers.fire_all()
    assert room.id not in registry
    assert evictions == [(room.id, 'p1', None)]


def test_grace_depends_on_match_state(registry):
    room = full_room(registry)
    assert registry.grace_for(room) == 30
    room.match = apply_toss_choice(room, 'p1', 'bowl')
    assert registry.grace_for(room) == 60


def test_stale_timer_does_not_evict(registry, evictions):
    room = full_room(registry)
    registry.mark_disconnected('p2')
    first = registry.schedule_disconnect_expiry(room.id, 'p2')
    registry.mark_reconnected('p2')
    registry.mark_disconnected('p2')
    second = registry.schedule_disconnect_expiry(room.id, 'p2')

    assert first != second
    assert registry.expire_disconnect(room.id, 'p2', first) is False
    assert room.member('p2') is not None
    assert registry.expire_disconnect(room.id, 'p2', second) is True
    assert room.member('p2') is None
    assert len(evictions) == 1


def test_expiry_is_not_armed_for_connected_member(registry):
    room = full_room(registry)
    assert registry.schedule_disconnect_expiry(room.id, 'p1') is None
    assert registry.schedule_disconnect_expiry('NOPE00', 'p1') is None


def test_closing_room_cancels_its_timers(registry, timers, evictions):
    room = full_room(registry)
    registry.mark_disconnected('p2')
    registry.schedule_disconnect_expiry(room.id, 'p2')
    registry.leave_room(room.id, 'p1')
    registry.leave_room(room.id, 'p2')

    assert registry.pending_expiry(room.id, 'p2') is None
    timers.fire_all()
    assert evictions == []


def test_disconnect_from_stale_connection_is_ignored(registry):
    room = full_room(registry)
    registry.mark_reconnected('p2', 'sid-new')
    assert registry.mark_disconnected('p2', 'sid-old') is None
    assert room.member('p2').connected

    assert registry.mark_disconnected('p2', 'sid-new') is room
    assert not room.member('p2').connected
