class GyroError(Exception):
    """Base exception for errors raised by gyro itself.

    Driver errors (``pymongo.errors.PyMongoError``) are never wrapped in this type, they propagate unchanged so callers
    can keep matching on the exceptions they already know."""
    def __init__(self, *args, url: str | None = None):
        super().__init__(*args)

        self.url = url
        if url:
            self.add_note(f" - Using MongoDB: {url}")


class ConnectFailed(GyroError):
    """Raised when the low-level connect (client creation and ping) fails. The connection manager keeps retrying in the
    background, this only reports the failure to the callers that were waiting on that attempt."""


class InvalidSettings(GyroError, ValueError):
    """Raised when connection settings are rejected."""
