"""
Domain exceptions.

Everything the lobby and the match engine refuse to do is raised as a
subclass of CreaseError so the socket layer can report it back to the
originating connection in one place.
"""


class CreaseError(Exception):
    """Base class for all domain errors"""
    kind = 'error'


# ============ Validation ============

class ValidationError(CreaseError):
    """Bad input; nothing was changed"""
    kind = 'validation'


class InvalidName(ValidationError):
    def __init__(self, name=None):
        self.name = name
        super().__init__('Room name is required')


class InvalidChoice(ValidationError):
    def __init__(self, choice=None):
        self.choice = choice
        super().__init__(f'Invalid choice {choice!r}. Must be "bat" or "bowl"')


class InvalidPayload(ValidationError):
    pass


# ============ Not found ============

class NotFoundError(CreaseError):
    kind = 'not_found'


class RoomNotFound(NotFoundError):
    def __init__(self, room_id):
        self.room_id = room_id
        super().__init__(f'Room {room_id} not found')


class PlayerNotInRoom(NotFoundError):
    def __init__(self, player_id):
        self.player_id = player_id
        super().__init__(f'Player {player_id} is not in the room')


class PlayerNotRegistered(NotFoundError):
    def __init__(self):
        super().__init__('Player not registered')


# ============ Conflicts ============

class ConflictError(CreaseError):
    """Request clashes with the current room or match state"""
    kind = 'conflict'


class AlreadyInRoom(ConflictError):
    def __init__(self, player_id, room_id=None):
        self.player_id = player_id
        self.room_id = room_id
        super().__init__('Player is already in a room')


class AlreadyInOtherRoom(ConflictError):
    def __init__(self, player_id, room_id=None):
        self.player_id = player_id
        self.room_id = room_id
        super().__init__('Player is already in another room')


class RoomFull(ConflictError):
    def __init__(self, room_id):
        self.room_id = room_id
        super().__init__('Room is full')


class InsufficientPlayers(ConflictError):
    def __init__(self, count):
        self.count = count
        super().__init__(f'Need exactly 2 players, got {count}')


class NotTossWinner(ConflictError):
    def __init__(self, player_id):
        self.player_id = player_id
        super().__init__('Only the toss winner may choose to bat or bowl')


class MatchInProgress(ConflictError):
    def __init__(self, room_id):
        self.room_id = room_id
        super().__init__('A match is already in progress in this room')


class MatchNotStarted(ConflictError):
    def __init__(self, room_id):
        self.room_id = room_id
        super().__init__('Match not started')


# ============ Programming errors ============

class MatchInvariantError(CreaseError):
    """Match state broke one of its own rules; the match cannot continue"""
    kind = 'internal'
