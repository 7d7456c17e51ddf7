class ChatError(Exception):
    status_code = 500


class ValidationError(ChatError):
    """Required request fields are missing."""

    status_code = 400


class AuthError(ChatError):
    """Bad credentials or a token that does not resolve to a user."""

    status_code = 401


class PersistenceError(ChatError):
    """Reading or writing a persisted document failed."""
