class RelayError(Exception):
    """Base class for failures surfaced by the chat relay."""


class ConfigurationError(RelayError):
    """A required setting, such as the webhook URL, is missing."""


class UpstreamError(RelayError):
    """The external webhook rejected the request or could not be reached."""


class StoreError(RelayError):
    """The key-value store failed to read or write a record."""


class InvalidCallbackError(RelayError):
    """A callback body is missing required fields."""


class CallbackForbiddenError(RelayError):
    """A callback carried a missing or wrong signature."""


class UnknownRequestError(RelayError):
    """No record exists for the correlation id."""
