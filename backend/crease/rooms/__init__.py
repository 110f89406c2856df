"""In-memory room registry: membership, connection state and disconnect timers."""
from .registry import Participant, Room, SessionRegistry  # noqa: F401
