"""
Exception taxonomy for the bridge.

Setup failures surface from ``RecognitionSession.open`` as exceptions because no session
exists yet to report a status on. Transport failures are raised by the transport layer
and converted into a ``FeedStatus.BREAK`` at the session boundary.
"""


class WhisperLinkError(Exception):
  """Base class for all bridge errors."""


class SessionSetupError(WhisperLinkError):
  """Opening a session failed; nothing was left half-constructed."""


class TransportError(WhisperLinkError):
  """The backend connection broke: a write failed, the peer closed, or a frame was unreadable."""


class TransportTimeout(TransportError):
  """A bounded wait for the backend elapsed where a frame was required."""
