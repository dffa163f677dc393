"""Exception hierarchy for mqtt-dbus-notify."""


class BridgeError(Exception):
    """Base class for all errors raised by the bridge."""


class ConnectError(BridgeError):
    """Connecting to the broker or the notification service failed."""


class ConnectTimeout(ConnectError):
    """The broker did not acknowledge the connection in time."""


class SubscribeError(BridgeError):
    """The broker rejected a subscription or the request could not be sent."""


class SubscribeTimeout(SubscribeError):
    """The broker did not acknowledge a subscription in time."""


class TemplateError(BridgeError):
    """A notification template could not be compiled or rendered."""


class TemplateParseError(TemplateError):
    pass


class TemplateEvalError(TemplateError):
    pass


class InvalidTopicIndex(TemplateEvalError, IndexError):
    """A template asked for a topic segment that does not exist."""


class NotifyError(BridgeError):
    """The desktop notification service rejected or failed a Notify call."""
