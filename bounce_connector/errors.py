"""Exceptions raised by bounce_connector collaborators."""


class BounceConnectorError(Exception):
    """Base class for all bounce_connector errors."""


class SentMailLookupError(BounceConnectorError):
    """The sent-mail store could not answer a query."""


class MailboxError(BounceConnectorError):
    """Connecting to or reading from the bounce mailbox failed."""
