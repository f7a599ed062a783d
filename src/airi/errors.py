"""Exception hierarchy shared by the server, the client and the store."""

from __future__ import annotations


class AiriError(Exception):
    """Base class for every error raised by this package."""


# -----------------------------
# Transport / channel
# -----------------------------
class ConnectError(AiriError):
    """The transport could not be established (refused, DNS, timeout)."""


class SendError(AiriError):
    """A write was attempted on a channel that is not open."""


class ChannelClosed(SendError):
    """A write was attempted after ``close()`` started."""


class TransportError(AiriError):
    """The transport failed while the channel was open."""


class DecodeError(AiriError):
    """An inbound payload could not be decoded as a Message."""


# -----------------------------
# Persistence
# -----------------------------
class PersistenceError(AiriError):
    """The persistence collaborator failed."""


class NotFound(PersistenceError):
    """An id does not refer to a stored record."""
