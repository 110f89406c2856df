"""Cricket match logic: intents, shot outcomes and the per-room match state machine.

Nothing in here knows about sockets or the database; the socket handlers
call into it while holding the room lock.
"""
from .match import MatchEngine, apply_toss_choice, perform_toss  # noqa: F401
from .outcome import resolve  # noqa: F401
