from flask import Blueprint, jsonify, request
from crease import db
from crease.models import MatchRecord, PlayerStats

matches = Blueprint('matches', __name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def _limit() -> int:
    try:
        limit = int(request.args.get('limit', DEFAULT_PAGE_SIZE))
    except (TypeError, ValueError):
        limit = DEFAULT_PAGE_SIZE
    return max(1, min(MAX_PAGE_SIZE, limit))


@matches.route('/matches', methods=['GET'])
def list_matches():
    """Most recent completed matches first."""
    records = (MatchRecord.query
               .order_by(MatchRecord.completed_at.desc(), MatchRecord.id.desc())
               .limit(_limit())
               .all())
    return jsonify([r.to_dict() for r in records])


@matches.route('/matches/<int:match_id>', methods=['GET'])
def get_match(match_id):
    record = db.session.get(MatchRecord, match_id)
    if not record:
        return jsonify({'error': 'Match not found'}), 404
    return jsonify(record.to_dict())


@matches.route('/matches/player/<string:participant_id>', methods=['GET'])
def list_player_matches(participant_id):
    records = (MatchRecord.query
               .filter(db.or_(MatchRecord.team_a_id == participant_id,
                              MatchRecord.team_b_id == participant_id))
               .order_by(MatchRecord.completed_at.desc(), MatchRecord.id.desc())
               .limit(_limit())
               .all())
    return jsonify([r.to_dict() for r in records])


@matches.route('/players/<string:participant_id>/stats', methods=['GET'])
def get_player_stats(participant_id):
    stats = db.session.get(PlayerStats, participant_id)
    if not stats:
        return jsonify({'error': 'Player not found'}), 404
    return jsonify(stats.to_dict())
