import json
from typing import Any, Dict, Optional, Sequence

from crease import db
from crease.models import MatchRecord, PlayerStats


def record_completed_match(result, final_scores: Sequence[Dict[str, Any]], participant_ids: Sequence[str],
                           names: Optional[Dict[str, str]] = None, room_name: Optional[str] = None,
                           total_overs: Optional[int] = None) -> MatchRecord:
    """Persist a finished match and fold it into both players' stats.

    ``final_scores`` is one dict per innings carrying ``battingId``,
    ``bowlingId``, ``runs`` and ``wickets`` (plus whatever else the
    snapshot had). ``participant_ids`` is (batting first, bowling first).
    Raises on database failure after rolling back; the caller decides
    whether that matters.
    """
    names = names or {}
    team_a_id, team_b_id = participant_ids
    try:
        record = MatchRecord(
            room_name=room_name,
            team_a_id=team_a_id,
            team_a_name=names.get(team_a_id),
            team_b_id=team_b_id,
            team_b_name=names.get(team_b_id),
            innings=json.dumps(list(final_scores)),
            winner_id=result.winner_id,
            margin_value=result.margin_value,
            margin_kind=result.margin_kind,
            summary=result.summary,
            total_overs=total_overs,
        )
        db.session.add(record)

        for pid in participant_ids:
            stats = db.session.get(PlayerStats, pid)
            if stats is None:
                stats = PlayerStats(participant_id=pid, games_played=0, games_won=0, games_tied=0,
                                    highest_score=0, wickets_taken=0)
            if names.get(pid):
                stats.display_name = names[pid]
            stats.games_played += 1
            if result.winner_id == pid:
                stats.games_won += 1
            elif result.winner_id is None:
                stats.games_tied += 1
            for score in final_scores:
                if score.get('battingId') == pid:
                    stats.highest_score = max(stats.highest_score, int(score.get('runs') or 0))
                if score.get('bowlingId') == pid:
                    stats.wickets_taken += int(score.get('wickets') or 0)
            db.session.add(stats)

        db.session.commit()
        return record
    except Exception:
        db.session.rollback()
        raise
