class EngineError(Exception):
    """Base class for errors surfaced to callers of the engine."""

    status_code: int = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(EngineError):
    status_code = 404


class InvalidState(EngineError):
    status_code = 409


class AttemptComplete(InvalidState):
    """No unlocked section remains on the attempt."""


class DuplicateAnswer(InvalidState):
    pass


class Unauthorized(EngineError):
    status_code = 403


class MissingIdentity(Unauthorized):
    status_code = 401
