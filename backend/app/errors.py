"""Domain errors raised by the session engine.

Every error carries a short ``reason`` string; the event boundary reports it to
the originating connection and leaves the session untouched.
"""


class GameError(ValueError):
    reason = "error"

    def __init__(self, message: str = "", reason: str | None = None):
        if reason is not None:
            self.reason = reason
        super().__init__(message or self.reason)


class QuizNotFound(GameError):
    reason = "quiz_not_found"


class SessionNotFound(GameError):
    reason = "session_not_found"


class GameAlreadyStarted(GameError):
    reason = "game_already_started"


class DuplicateAnswer(GameError):
    reason = "duplicate_answer"


class NotHost(GameError):
    reason = "not_host"


class Unauthorized(GameError):
    reason = "unauthorized"


class WordRejected(GameError):
    LIMIT_REACHED = "limit_reached"
    PROFANE = "profane"
    INVALID = "invalid"
    NOT_WORDCLOUD = "not_wordcloud"

    def __init__(self, reason: str):
        super().__init__(f"Word rejected: {reason}", reason=reason)
