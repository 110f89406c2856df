"""Shot outcome resolution.

Turns one bowl intent and one bat intent into a scoring verdict. The
function holds no state; all randomness comes from the ``rng`` argument so
a seeded ``random.Random`` reproduces a match ball for ball.
"""
import math
import random
from dataclasses import dataclass
from typing import Optional

from .intents import BowlIntent, BatIntent


# Scales shot effectiveness (0..1) onto the 0..6 run range
MAX_RUNS = 6

POOR = 'poor'
DECENT = 'decent'
GOOD = 'good'
PERFECT = 'perfect'

WICKET_DESCRIPTIONS = (
    'BOWLED! The stumps are shattered!',
    'CAUGHT! A good catch in the field!',
    'LBW! That looked plumb in front!',
    'STUMPED! The batsman was out of the crease!',
    'CAUGHT BEHIND! The keeper makes no mistake!',
)

# Indices into WICKET_DESCRIPTIONS; repeats weight the draw
WICKET_WEIGHTS = {
    'fast': (0, 1, 1, 4, 2),
    'spin': (0, 1, 2, 3, 3),
    'swing': (0, 0, 1, 4, 2),
}
_EVEN_WEIGHTS = (0, 1, 2, 3, 4)

SHOT_DESCRIPTIONS = {
    'drive': {POOR: 'A mistimed drive', DECENT: 'A steady drive',
              GOOD: 'A well-timed drive', PERFECT: 'A brilliant drive'},
    'cut': {POOR: 'A mistimed cut', DECENT: 'A steady cut',
            GOOD: 'A well-timed cut', PERFECT: 'A brilliant cut'},
    'pull': {POOR: 'A mistimed pull', DECENT: 'A steady pull',
             GOOD: 'A well-timed pull', PERFECT: 'A powerful pull'},
    'sweep': {POOR: 'A mistimed sweep', DECENT: 'A steady sweep',
              GOOD: 'A well-timed sweep', PERFECT: 'A brilliant sweep'},
    'defensive': {POOR: 'A shaky defensive shot', DECENT: 'A solid block',
                  GOOD: 'A controlled defensive shot', PERFECT: 'A masterful defensive shot'},
}

GENERIC_DESCRIPTIONS = {
    '0': 'No run. Good defensive shot.',
    '1': 'Single run taken with a quick push.',
    '2': 'Two runs as the batsmen run quickly between the wickets.',
    '3': 'Three runs taken with good running.',
    '4': 'FOUR! The ball races to the boundary.',
    '6': "SIX! That's gone all the way over the boundary rope!",
    'W': 'OUT! The batsman has to go.',
    'WD': 'Wide ball. Extra run to the batting side.',
    'NB': 'No ball called by the umpire. Free hit coming up!',
}


@dataclass(frozen=True)
class Verdict:
    runs: int = 0
    is_wicket: bool = False
    is_boundary: bool = False
    quality: str = POOR
    description: str = ''
    shot_effectiveness: float = 0.0


def timing_effectiveness(timing: float) -> float:
    # Zero once |timing| reaches 0.2
    return 1 - min(1.0, abs(timing) * 5)


def direction_factor(bowl_direction: float, bat_direction: float) -> float:
    return 1 - min(1.0, abs(bowl_direction - bat_direction) / 2)


def shot_effectiveness(bowl: BowlIntent, bat: BatIntent) -> float:
    return 0.6 * timing_effectiveness(bat.timing) + 0.4 * direction_factor(bowl.direction, bat.direction)


def wicket_description(bowl_type: str, rng: random.Random) -> str:
    index = rng.choice(WICKET_WEIGHTS.get(bowl_type, _EVEN_WEIGHTS))
    return WICKET_DESCRIPTIONS[index]


def shot_description(shot_type: str, quality: str) -> str:
    try:
        return SHOT_DESCRIPTIONS[shot_type][quality]
    except KeyError:
        return f'A {quality} {shot_type} shot'


def describe(notation: str) -> str:
    return GENERIC_DESCRIPTIONS.get(notation, 'The ball is played.')


def _runs_text(shot: str, runs: int, boundary: bool = False) -> str:
    text = f"{shot} for {runs} run{'' if runs == 1 else 's'}"
    if boundary:
        text += ' - FOUR!'
    return text


def resolve(bowl: BowlIntent, bat: BatIntent, rng: Optional[random.Random] = None,
            random_factor: Optional[float] = None) -> Verdict:
    """Resolve one delivery.

    ``random_factor`` pins the 0.7-1.3 multiplier instead of drawing it from
    ``rng``; everything else is still drawn from ``rng``.
    """
    rng = rng or random.Random()
    effectiveness = shot_effectiveness(bowl, bat)
    if random_factor is None:
        random_factor = rng.uniform(0.7, 1.3)
    run_potential = effectiveness * bat.power * random_factor * MAX_RUNS

    if effectiveness < 0.2:
        quality = POOR
        if rng.random() < 0.7:
            return _wicket(bowl, quality, effectiveness, rng)
        runs = rng.randint(0, 1)
        return Verdict(runs=runs, quality=quality, shot_effectiveness=effectiveness,
                       description=_runs_text(shot_description(bat.shot_type, quality), runs))

    if effectiveness < 0.5:
        quality = DECENT
        if rng.random() < 0.2:
            return _wicket(bowl, quality, effectiveness, rng)
        runs = rng.randint(0, 2)
        return Verdict(runs=runs, quality=quality, shot_effectiveness=effectiveness,
                       description=_runs_text(shot_description(bat.shot_type, quality), runs))

    if effectiveness < 0.8:
        quality = GOOD
        if rng.random() < 0.05:
            return _wicket(bowl, quality, effectiveness, rng)
        runs = min(4, math.floor(run_potential))
        boundary = runs == 4
        return Verdict(runs=runs, is_boundary=boundary, quality=quality, shot_effectiveness=effectiveness,
                       description=_runs_text(shot_description(bat.shot_type, quality), runs, boundary))

    quality = PERFECT
    shot = shot_description(bat.shot_type, quality)
    runs = math.floor(run_potential)
    if runs < 4:
        return Verdict(runs=runs, quality=quality, shot_effectiveness=effectiveness,
                       description=_runs_text(shot, runs))
    if runs > 4 and rng.random() < 0.3:
        return Verdict(runs=6, is_boundary=True, quality=quality, shot_effectiveness=effectiveness,
                       description=f'{shot} - SIX!')
    return Verdict(runs=4, is_boundary=True, quality=quality, shot_effectiveness=effectiveness,
                   description=f'{shot} - FOUR!')


def _wicket(bowl: BowlIntent, quality: str, effectiveness: float, rng: random.Random) -> Verdict:
    return Verdict(is_wicket=True, quality=quality, shot_effectiveness=effectiveness,
                   description=wicket_description(bowl.bowl_type, rng))
