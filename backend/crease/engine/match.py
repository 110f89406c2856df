"""Match state machine.

One MatchEngine per room, created when the toss winner chooses to bat or
bowl. The engine is not thread-safe on its own; the room lock held by the
caller serializes every call into it.

Flow per delivery:
    submit_action(bowler, bowl) -> buffered
    submit_action(striker, bat) -> resolve_delivery() -> scoring, overs, innings
"""
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from crease.exceptions import (
    InsufficientPlayers,
    InvalidChoice,
    MatchInvariantError,
    PlayerNotInRoom,
)
from .intents import BatIntent, BowlIntent, default_bat_intent, default_bowl_intent
from .outcome import Verdict, describe, resolve

logger = logging.getLogger(__name__)

BALLS_PER_OVER = 6
MAX_RECENT_DELIVERIES = 10
DEFAULT_TOTAL_OVERS = 5
DEFAULT_MAX_WICKETS = 10
DEFAULT_EXTRA_PROBABILITY = 0.05

IN_PROGRESS = 'in_progress'
COMPLETE = 'complete'

MARGIN_RUNS = 'runs'
MARGIN_WICKETS = 'wickets'
MARGIN_TIE = 'tie'

WIDE = 'WD'
NO_BALL = 'NB'
WICKET = 'W'
EXTRAS = (WIDE, NO_BALL)

CHOICES = ('bat', 'bowl')


@dataclass
class InningsScore:
    runs: int = 0
    wickets: int = 0
    legal_balls: int = 0
    extras: int = 0
    boundaries: int = 0
    sixes: int = 0

    @property
    def overs(self) -> str:
        return f'{self.legal_balls // BALLS_PER_OVER}.{self.legal_balls % BALLS_PER_OVER}'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'runs': self.runs,
            'wickets': self.wickets,
            'legalBalls': self.legal_balls,
            'overs': self.overs,
            'extras': self.extras,
            'boundaries': self.boundaries,
            'sixes': self.sixes,
        }


@dataclass
class DeliveryRecord:
    notation: str
    description: str

    def to_dict(self) -> Dict[str, str]:
        return {'notation': self.notation, 'description': self.description}


@dataclass
class MatchResult:
    winner_id: Optional[str]
    margin_value: Optional[int]
    margin_kind: str
    summary: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'winnerId': self.winner_id,
            'marginValue': self.margin_value,
            'marginKind': self.margin_kind,
            'summary': self.summary,
        }


@dataclass
class MatchState:
    team_a: Any
    team_b: Any
    striker_id: str
    bowler_id: str
    total_overs: int = DEFAULT_TOTAL_OVERS
    max_wickets: int = DEFAULT_MAX_WICKETS
    innings_index: int = 1
    innings: List[InningsScore] = field(default_factory=lambda: [InningsScore(), InningsScore()])
    over: int = 0
    ball_in_over: int = 0
    recent_deliveries: List[DeliveryRecord] = field(default_factory=list)
    status: str = IN_PROGRESS
    result: Optional[MatchResult] = None

    @property
    def current_innings(self) -> InningsScore:
        return self.innings[self.innings_index - 1]

    @property
    def batting_side(self):
        return self.team_a if self.innings_index == 1 else self.team_b

    @property
    def bowling_side(self):
        return self.team_b if self.innings_index == 1 else self.team_a

    @property
    def target(self) -> Optional[int]:
        if self.innings_index != 2:
            return None
        return self.innings[0].runs + 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'teamA': _participant_dict(self.team_a),
            'teamB': _participant_dict(self.team_b),
            'inningsIndex': self.innings_index,
            'innings': [i.to_dict() for i in self.innings],
            'battingId': self.batting_side.id,
            'bowlingId': self.bowling_side.id,
            'strikerId': self.striker_id,
            'bowlerId': self.bowler_id,
            'over': self.over,
            'ballInOver': self.ball_in_over,
            'totalOvers': self.total_overs,
            'maxWickets': self.max_wickets,
            'target': self.target,
            'recentDeliveries': [d.to_dict() for d in self.recent_deliveries],
            'status': self.status,
            'result': self.result.to_dict() if self.result else None,
        }


@dataclass
class SubmitResult:
    """What a single submit_action call did.

    ``accepted`` is False for out-of-turn or post-match submissions.
    ``first_intent`` marks the intent that opened a new delivery, which is
    when the caller arms the synthesis timer.
    """
    accepted: bool
    delivery_seq: int
    first_intent: bool = False
    delivery: Optional[DeliveryRecord] = None
    innings_ended: bool = False
    completed: bool = False


def _participant_dict(participant) -> Dict[str, Any]:
    to_dict = getattr(participant, 'to_dict', None)
    if to_dict is not None:
        return to_dict()
    return {'id': participant.id, 'displayName': getattr(participant, 'display_name', None)}


class MatchEngine:
    """Authoritative state for one match."""

    def __init__(self, team_a, team_b, total_overs: int = DEFAULT_TOTAL_OVERS,
                 max_wickets: int = DEFAULT_MAX_WICKETS, rng: Optional[random.Random] = None,
                 resolver: Callable[..., Verdict] = resolve,
                 extra_probability: float = DEFAULT_EXTRA_PROBABILITY):
        if total_overs < 1:
            raise ValueError('total_overs must be at least 1')
        if max_wickets < 1:
            raise ValueError('max_wickets must be at least 1')
        self.state = MatchState(
            team_a=team_a,
            team_b=team_b,
            striker_id=team_a.id,
            bowler_id=team_b.id,
            total_overs=total_overs,
            max_wickets=max_wickets,
        )
        self.rng = rng or random.Random()
        self.resolver = resolver
        self.extra_probability = extra_probability
        self.delivery_seq = 0
        self.pending_bowl: Optional[BowlIntent] = None
        self.pending_bat: Optional[BatIntent] = None

    @property
    def is_complete(self) -> bool:
        return self.state.status == COMPLETE

    @property
    def participant_ids(self):
        return (self.state.team_a.id, self.state.team_b.id)

    def snapshot(self) -> Dict[str, Any]:
        payload = self.state.to_dict()
        payload['awaiting'] = self._awaiting()
        return payload

    def final_scores(self) -> List[Dict[str, Any]]:
        """Both innings with the batting and bowling participant attached."""
        state = self.state
        sides = ((state.team_a, state.team_b), (state.team_b, state.team_a))
        return [dict(innings.to_dict(), battingId=batting.id, bowlingId=bowling.id)
                for innings, (batting, bowling) in zip(state.innings, sides)]

    def _awaiting(self) -> List[str]:
        if self.is_complete:
            return []
        waiting = []
        if self.pending_bowl is None:
            waiting.append('bowl')
        if self.pending_bat is None:
            waiting.append('bat')
        return waiting

    def submit_action(self, participant_id: str, action: Dict[str, Any]) -> SubmitResult:
        """Buffer an intent from the participant whose turn it is.

        Out-of-turn actions and actions after the match has finished are
        ignored, not rejected.
        """
        state = self.state
        if self.is_complete or not isinstance(action, dict):
            return SubmitResult(accepted=False, delivery_seq=self.delivery_seq)

        opening = self.pending_bowl is None and self.pending_bat is None
        kind = str(action.get('type') or '').lower()
        if kind == 'bowl' and participant_id == state.bowler_id:
            self.pending_bowl = BowlIntent.from_payload(action)
        elif kind == 'bat' and participant_id == state.striker_id:
            self.pending_bat = BatIntent.from_payload(action)
        else:
            return SubmitResult(accepted=False, delivery_seq=self.delivery_seq)

        if self.pending_bowl is None or self.pending_bat is None:
            return SubmitResult(accepted=True, delivery_seq=self.delivery_seq, first_intent=opening)

        seq = self.delivery_seq
        innings_before = state.innings_index
        record = self.resolve_delivery()
        return SubmitResult(
            accepted=True,
            delivery_seq=seq,
            first_intent=opening,
            delivery=record,
            innings_ended=self.is_complete or state.innings_index != innings_before,
            completed=self.is_complete,
        )

    def synthesize_missing(self, delivery_seq: int) -> Optional[DeliveryRecord]:
        """Fill in whichever intent never arrived and resolve.

        No-op if the delivery numbered ``delivery_seq`` already resolved,
        nothing is buffered, or the match is over.
        """
        if self.is_complete or delivery_seq != self.delivery_seq:
            return None
        if self.pending_bowl is None and self.pending_bat is None:
            return None
        if self.pending_bowl is None:
            self.pending_bowl = default_bowl_intent(self.rng)
            logger.info('synthesized bowl intent for delivery %s', delivery_seq)
        if self.pending_bat is None:
            self.pending_bat = default_bat_intent(self.rng)
            logger.info('synthesized bat intent for delivery %s', delivery_seq)
        return self.resolve_delivery()

    def resolve_delivery(self) -> DeliveryRecord:
        if self.is_complete:
            raise MatchInvariantError('Delivery resolved after match completion')
        if self.pending_bowl is None or self.pending_bat is None:
            raise MatchInvariantError('Delivery resolved without both intents')

        bowl, bat = self.pending_bowl, self.pending_bat
        self.pending_bowl = None
        self.pending_bat = None

        verdict = self.resolver(bowl, bat, self.rng)
        notation = self._notation_for(verdict)
        description = describe(notation) if notation in EXTRAS else (verdict.description or describe(notation))
        record = DeliveryRecord(notation=notation, description=description)

        recent = self.state.recent_deliveries
        recent.insert(0, record)
        del recent[MAX_RECENT_DELIVERIES:]

        self._apply(notation)
        self.delivery_seq += 1
        self.check_invariants()
        return record

    def _notation_for(self, verdict: Verdict) -> str:
        if verdict.is_wicket:
            return WICKET
        if self.rng.random() < self.extra_probability:
            return WIDE if self.rng.random() < 0.5 else NO_BALL
        return str(verdict.runs)

    def _apply(self, notation: str) -> None:
        state = self.state
        innings = state.current_innings

        if notation in EXTRAS:
            innings.runs += 1
            innings.extras += 1
            return

        if notation == WICKET:
            innings.wickets += 1
        else:
            runs = int(notation)
            innings.runs += runs
            if runs == 4:
                innings.boundaries += 1
            elif runs == 6:
                innings.sixes += 1

        innings.legal_balls += 1
        state.ball_in_over += 1
        if state.ball_in_over == BALLS_PER_OVER:
            state.over += 1
            state.ball_in_over = 0
            state.striker_id, state.bowler_id = state.bowler_id, state.striker_id

        if innings.wickets >= state.max_wickets or state.over >= state.total_overs:
            self._end_innings()

    def _end_innings(self) -> None:
        state = self.state
        if state.innings_index == 1:
            state.innings_index = 2
            state.over = 0
            state.ball_in_over = 0
            state.striker_id = state.team_b.id
            state.bowler_id = state.team_a.id
            logger.info('first innings closed at %s/%s', state.innings[0].runs, state.innings[0].wickets)
            return
        self._complete()

    def _complete(self) -> None:
        state = self.state
        if state.result is not None:
            raise MatchInvariantError('Match result produced twice')
        first, second = state.innings
        if first.runs > second.runs:
            margin = first.runs - second.runs
            state.result = MatchResult(
                winner_id=state.team_a.id,
                margin_value=margin,
                margin_kind=MARGIN_RUNS,
                summary=f"{_name(state.team_a)} won by {margin} run{'' if margin == 1 else 's'}!",
            )
        elif second.runs > first.runs:
            margin = state.max_wickets - second.wickets
            state.result = MatchResult(
                winner_id=state.team_b.id,
                margin_value=margin,
                margin_kind=MARGIN_WICKETS,
                summary=f"{_name(state.team_b)} won by {margin} wicket{'' if margin == 1 else 's'}!",
            )
        else:
            state.result = MatchResult(winner_id=None, margin_value=None, margin_kind=MARGIN_TIE,
                                       summary='Match tied!')
        state.status = COMPLETE
        logger.info('match complete: %s', state.result.summary)

    def check_invariants(self) -> None:
        state = self.state
        if not 0 <= state.ball_in_over < BALLS_PER_OVER:
            raise MatchInvariantError(f'ball_in_over out of range: {state.ball_in_over}')
        if state.innings_index not in (1, 2):
            raise MatchInvariantError(f'innings_index out of range: {state.innings_index}')
        for innings in state.innings:
            if not 0 <= innings.wickets <= state.max_wickets:
                raise MatchInvariantError(f'wickets out of range: {innings.wickets}')
        if {state.striker_id, state.bowler_id} != {state.team_a.id, state.team_b.id}:
            raise MatchInvariantError('striker and bowler must be the two different participants')
        if (state.status == COMPLETE) != (state.result is not None):
            raise MatchInvariantError('result must exist exactly when the match is complete')
        if state.status == IN_PROGRESS:
            innings = state.current_innings
            if innings.legal_balls != state.over * BALLS_PER_OVER + state.ball_in_over:
                raise MatchInvariantError('legal ball count out of step with over count')


def _name(participant) -> str:
    return getattr(participant, 'display_name', None) or str(participant.id)


def perform_toss(room, rng: Optional[random.Random] = None):
    """Pick the toss winner uniformly from the room's two members."""
    count = len(room.members)
    if count != 2:
        raise InsufficientPlayers(count)
    return (rng or random).choice(room.members)


def apply_toss_choice(room, winner_id: str, choice: str, total_overs: int = DEFAULT_TOTAL_OVERS,
                      max_wickets: int = DEFAULT_MAX_WICKETS, **engine_options) -> MatchEngine:
    """Set up batting/bowling sides from the toss winner's choice.

    ``engine_options`` pass straight through to MatchEngine (rng, resolver,
    extra_probability).
    """
    normalized = str(choice).strip().lower() if choice is not None else ''
    if normalized not in CHOICES:
        raise InvalidChoice(choice)
    count = len(room.members)
    if count != 2:
        raise InsufficientPlayers(count)
    winner = next((p for p in room.members if p.id == winner_id), None)
    if winner is None:
        raise PlayerNotInRoom(winner_id)
    opponent = next(p for p in room.members if p.id != winner_id)

    if normalized == 'bat':
        batting, bowling = winner, opponent
    else:
        batting, bowling = opponent, winner
    return MatchEngine(batting, bowling, total_overs=total_overs, max_wickets=max_wickets, **engine_options)
