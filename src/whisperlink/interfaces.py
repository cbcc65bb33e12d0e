"""
Protocol interfaces for the collaborators a recognition session drives.

Defines the contracts for the voice activity detector and the backend transport using
Python's Protocol system for structural typing, so hosts and tests can substitute their
own implementations.
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol


class VadState(StrEnum):
  """Speech/silence transition reported for a single frame."""

  NONE = "none"
  START_TALKING = "start_talking"
  TALKING = "talking"
  STOP_TALKING = "stop_talking"


class VoiceActivityDetector(Protocol):
  """
  Protocol for frame-by-frame voice activity detection.

  The detector is stateful: each call to ``process`` advances it by one frame.
  """

  def process(self, frame: bytes) -> VadState:
    """
    Classify one frame of 16-bit PCM.

    :returns:
        The transition observed at this frame.
    """
    ...

  def set_mode(self, mode: int) -> None:
    """Select the detector mode. Negative values select energy scoring."""
    ...

  def set_param(self, name: str, value: int) -> None:
    """Set a named tuning parameter (``thresh``, ``silence_ms``, ``voice_ms``, ``debug``)."""
    ...

  def reset(self) -> None:
    """Forget all speech history, returning to the silent state."""
    ...


class FrameKind(StrEnum):
  """Kinds of frame a transport can surface."""

  TEXT = "text"
  BINARY = "binary"
  PING = "ping"
  PONG = "pong"
  CLOSE = "close"


@dataclass(frozen=True)
class InboundFrame:
  """A complete frame received from the backend."""

  kind: FrameKind
  payload: bytes

  @property
  def text(self) -> str:
    """The payload decoded as UTF-8, with undecodable bytes replaced."""
    return self.payload.decode("utf-8", errors="replace")


class Transport(Protocol):
  """
  Protocol for the bidirectional streaming connection to the transcription backend.

  All methods may raise ``TransportError`` when the connection is broken.
  """

  def send_binary(self, data: bytes) -> None:
    """Send one binary frame."""
    ...

  def send_text(self, text: str) -> None:
    """Send one text frame."""
    ...

  def send_pong(self, payload: bytes) -> None:
    """Answer a ping with a pong carrying the same payload."""
    ...

  def poll(self, timeout: float) -> bool:
    """
    Wait up to ``timeout`` seconds for an inbound frame.

    :returns:
        True when ``read_frame`` can return a frame without blocking.
    """
    ...

  def read_frame(self) -> InboundFrame:
    """Return the next inbound frame."""
    ...

  def close(self) -> None:
    """Close the connection unilaterally."""
    ...


TransportFactory = Callable[[str, float], Transport]
"""Opens a transport to a URL within a connect timeout given in seconds."""

VadFactory = Callable[[int], VoiceActivityDetector]
"""Creates a detector for a sample rate."""
