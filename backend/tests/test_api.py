from crease.engine.match import MARGIN_RUNS, MARGIN_TIE, MatchResult
from crease.models import PlayerStats
from crease.services.stats import record_completed_match


def innings(batting, bowling, runs, wickets):
    return {'battingId': batting, 'bowlingId': bowling, 'runs': runs, 'wickets': wickets,
            'legalBalls': 30, 'overs': '5.0', 'extras': 0, 'boundaries': 0, 'sixes': 0}


def record_win(winner='p1', loser='p2', margin=12):
    result = MatchResult(winner_id=winner, margin_value=margin, margin_kind=MARGIN_RUNS,
                         summary=f'{winner} won by {margin} runs!')
    scores = [innings(winner, loser, 40, 3), innings(loser, winner, 40 - margin, 6)]
    return record_completed_match(result, scores, (winner, loser),
                                  names={winner: winner.upper(), loser: loser.upper()},
                                  room_name='Nets', total_overs=5)


def test_index(client):
    res = client.get('/')
    assert res.status_code == 200
    assert 'message' in res.get_json()


def test_health(client):
    res = client.get('/api/health')
    assert res.status_code == 200
    assert res.get_json() == {'status': 'ok'}


def test_rooms_lists_live_rooms(client, lobby):
    from crease.rooms.registry import Participant
    assert client.get('/api/rooms').get_json() == []

    room = lobby.registry.create_room('Nets', Participant(id='p1', display_name='Asha'))
    rooms = client.get('/api/rooms').get_json()
    assert [r['id'] for r in rooms] == [room.id]
    assert rooms[0]['status'] == 'waiting'


def test_recorded_match_is_listed_and_fetchable(client):
    record = record_win()

    listing = client.get('/api/matches')
    assert listing.status_code == 200
    data = listing.get_json()
    assert len(data) == 1
    assert data[0]['id'] == record.id
    assert data[0]['teamA'] == {'id': 'p1', 'displayName': 'P1'}
    assert data[0]['innings'][1]['runs'] == 28

    single = client.get(f'/api/matches/{record.id}').get_json()
    assert single['summary'] == 'p1 won by 12 runs!'
    assert single['totalOvers'] == 5


def test_matches_are_newest_first_and_limited(client):
    first = record_win(margin=1)
    second = record_win(margin=2)
    third = record_win(margin=3)

    ids = [m['id'] for m in client.get('/api/matches').get_json()]
    assert ids == [third.id, second.id, first.id]
    assert len(client.get('/api/matches?limit=2').get_json()) == 2
    assert len(client.get('/api/matches?limit=bogus').get_json()) == 3


def test_player_matches(client):
    record_win('p1', 'p2')
    record_win('p3', 'p4')
    mine = client.get('/api/matches/player/p2').get_json()
    assert len(mine) == 1
    assert mine[0]['teamB']['id'] == 'p2'
    assert client.get('/api/matches/player/nobody').get_json() == []


def test_player_stats_accumulate(client):
    record_win('p1', 'p2')
    record_win('p2', 'p1')

    p1 = client.get('/api/players/p1/stats').get_json()
    assert p1['gamesPlayed'] == 2
    assert p1['gamesWon'] == 1
    assert p1['gamesLost'] == 1
    assert p1['highestScore'] == 40
    # 6 wickets bowling second in match one, 3 bowling first in match two
    assert p1['wicketsTaken'] == 9


def test_tie_counts_for_both(client, flask_app):
    result = MatchResult(winner_id=None, margin_value=None, margin_kind=MARGIN_TIE, summary='Match tied!')
    scores = [innings('p1', 'p2', 30, 2), innings('p2', 'p1', 30, 4)]
    record_completed_match(result, scores, ('p1', 'p2'))

    from crease import db
    for pid in ('p1', 'p2'):
        stats = db.session.get(PlayerStats, pid)
        assert stats.games_tied == 1
        assert stats.games_won == 0


def test_missing_match_and_player(client):
    res = client.get('/api/matches/999')
    assert res.status_code == 404
    assert res.get_json() == {'error': 'Match not found'}

    res = client.get('/api/players/ghost/stats')
    assert res.status_code == 404
    assert res.get_json() == {'error': 'Player not found'}
