from crease import db
from datetime import datetime, timezone
import json


def _utcnow():
    return datetime.now(timezone.utc)


class MatchRecord(db.Model):
    __tablename__ = 'match_record'
    id = db.Column(db.Integer, primary_key=True)
    room_name = db.Column(db.String(64), nullable=True)
    team_a_id = db.Column(db.String(64), nullable=False, index=True)
    team_a_name = db.Column(db.String(64), nullable=True)
    team_b_id = db.Column(db.String(64), nullable=False, index=True)
    team_b_name = db.Column(db.String(64), nullable=True)
    innings = db.Column(db.Text, nullable=False)  # JSON-encoded list of per-innings scores
    winner_id = db.Column(db.String(64), nullable=True)
    margin_value = db.Column(db.Integer, nullable=True)
    margin_kind = db.Column(db.String(16), nullable=False)  # runs, wickets, tie
    summary = db.Column(db.String(255), nullable=False)
    total_overs = db.Column(db.Integer, nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'roomName': self.room_name,
            'teamA': {'id': self.team_a_id, 'displayName': self.team_a_name},
            'teamB': {'id': self.team_b_id, 'displayName': self.team_b_name},
            'innings': json.loads(self.innings) if self.innings else [],
            'winnerId': self.winner_id,
            'marginValue': self.margin_value,
            'marginKind': self.margin_kind,
            'summary': self.summary,
            'totalOvers': self.total_overs,
            'completedAt': self.completed_at.isoformat() if self.completed_at else None,
        }


class PlayerStats(db.Model):
    __tablename__ = 'player_stats'
    participant_id = db.Column(db.String(64), primary_key=True)
    display_name = db.Column(db.String(64), nullable=True)
    games_played = db.Column(db.Integer, default=0, nullable=False)
    games_won = db.Column(db.Integer, default=0, nullable=False)
    games_tied = db.Column(db.Integer, default=0, nullable=False)
    highest_score = db.Column(db.Integer, default=0, nullable=False)
    wickets_taken = db.Column(db.Integer, default=0, nullable=False)

    def to_dict(self):
        return {
            'participantId': self.participant_id,
            'displayName': self.display_name,
            'gamesPlayed': self.games_played,
            'gamesWon': self.games_won,
            'gamesTied': self.games_tied,
            'gamesLost': self.games_played - self.games_won - self.games_tied,
            'highestScore': self.highest_score,
            'wicketsTaken': self.wickets_taken,
        }
