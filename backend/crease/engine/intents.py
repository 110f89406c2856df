from dataclasses import dataclass
from typing import Any, Dict, Optional
import random


BOWL_TYPES = ('fast', 'spin', 'swing')
SHOT_TYPES = ('drive', 'cut', 'pull', 'sweep', 'defensive')


def clamp(value: Any, low: float, high: float, default: float) -> float:
    """Coerce a client-supplied number into [low, high].

    Anything that is not a finite number falls back to ``default``.
    """
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number or number in (float('inf'), float('-inf')):
        return default
    return max(low, min(high, number))


def _pick(data: Dict[str, Any], *keys: str) -> Optional[Any]:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


@dataclass(frozen=True)
class BowlIntent:
    bowl_type: str = 'fast'
    power: float = 0.5
    direction: float = 0.0
    spin: float = 0.0

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> 'BowlIntent':
        bowl_type = _pick(data, 'bowlType', 'bowl_type')
        return cls(
            bowl_type=str(bowl_type).lower() if bowl_type else 'fast',
            power=clamp(data.get('power'), 0.0, 1.0, 0.5),
            direction=clamp(data.get('direction'), -1.0, 1.0, 0.0),
            spin=clamp(data.get('spin'), 0.0, 0.5, 0.0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'bowlType': self.bowl_type,
            'power': self.power,
            'direction': self.direction,
            'spin': self.spin,
        }


@dataclass(frozen=True)
class BatIntent:
    shot_type: str = 'defensive'
    power: float = 0.5
    timing: float = 0.0
    direction: float = 0.0

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> 'BatIntent':
        shot_type = _pick(data, 'shotType', 'shot_type')
        return cls(
            shot_type=str(shot_type).lower() if shot_type else 'defensive',
            power=clamp(data.get('power'), 0.0, 1.0, 0.5),
            timing=clamp(data.get('timing'), -1.0, 1.0, 0.0),
            direction=clamp(data.get('direction'), -1.0, 1.0, 0.0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'shotType': self.shot_type,
            'power': self.power,
            'timing': self.timing,
            'direction': self.direction,
        }


def default_bowl_intent(rng: random.Random) -> BowlIntent:
    """Randomized delivery used when the bowler never sent one."""
    return BowlIntent(
        bowl_type=rng.choice(BOWL_TYPES),
        power=rng.uniform(0.2, 1.0),
        direction=rng.uniform(-1.0, 1.0),
        spin=rng.uniform(0.0, 0.5),
    )


def default_bat_intent(rng: random.Random) -> BatIntent:
    """Randomized shot used when the striker never sent one."""
    return BatIntent(
        shot_type=rng.choice(SHOT_TYPES),
        power=rng.uniform(0.2, 1.0),
        timing=rng.uniform(-1.0, 1.0),
        direction=rng.uniform(-1.0, 1.0),
    )
