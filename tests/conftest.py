"""Fakes for the collaborators a recognition session drives, and fixtures wiring them up."""

import threading
from collections import deque
from collections.abc import Iterable

import pytest

from whisperlink.config import WhisperLinkConfig
from whisperlink.errors import TransportError, TransportTimeout
from whisperlink.interfaces import FrameKind, InboundFrame, VadState
from whisperlink.session import RecognitionSession


class FakeClock:
  """A monotonic clock the test advances by hand."""

  def __init__(self, start: float = 1000.0):
    self.now = start

  def __call__(self) -> float:
    return self.now

  def advance(self, seconds: float) -> None:
    self.now += seconds


class FakeTransport:
  """
  Records everything sent and serves scripted inbound frames.

  Set ``poll_gate`` to hold every poll until the event is set; ``polling`` is set once a
  poll has started.
  """

  def __init__(self):
    self.sent_binary: list[bytes] = []
    self.sent_text: list[str] = []
    self.pongs: list[bytes] = []
    self.poll_timeouts: list[float] = []
    self.inbound: deque[InboundFrame] = deque()
    self.close_calls = 0
    self.fail_writes = False
    self.closed = False
    self.poll_gate: threading.Event | None = None
    self.polling = threading.Event()

  def queue_text(self, text: str) -> None:
    self.inbound.append(InboundFrame(FrameKind.TEXT, text.encode("utf-8")))

  def queue_ping(self, payload: bytes = b"") -> None:
    self.inbound.append(InboundFrame(FrameKind.PING, payload))

  def _check_write(self) -> None:
    if self.closed or self.fail_writes:
      raise TransportError("Mock write failed")

  def send_binary(self, data: bytes) -> None:
    self._check_write()
    self.sent_binary.append(bytes(data))

  def send_text(self, text: str) -> None:
    self._check_write()
    self.sent_text.append(text)

  def send_pong(self, payload: bytes) -> None:
    self._check_write()
    self.pongs.append(payload)

  def poll(self, timeout: float) -> bool:
    self.poll_timeouts.append(timeout)
    self.polling.set()
    if self.poll_gate is not None:
      self.poll_gate.wait(5.0)
    if self.closed:
      raise TransportError("Mock transport is closed")
    return bool(self.inbound)

  def read_frame(self) -> InboundFrame:
    if not self.inbound:
      raise TransportTimeout("Mock transport has nothing queued")
    return self.inbound.popleft()

  def close(self) -> None:
    self.close_calls += 1
    self.closed = True


class ScriptedVad:
  """A detector that replays queued states, then reports silence."""

  def __init__(self, states: Iterable[VadState] = ()):
    self.script: deque[VadState] = deque(states)
    self.frames: list[bytes] = []
    self.params: dict[str, int] = {}
    self.mode: int | None = None
    self.resets = 0

  def push(self, *states: VadState) -> None:
    self.script.extend(states)

  def process(self, frame: bytes) -> VadState:
    self.frames.append(frame)
    return self.script.popleft() if self.script else VadState.NONE

  def set_mode(self, mode: int) -> None:
    self.mode = mode

  def set_param(self, name: str, value: int) -> None:
    self.params[name] = value

  def reset(self) -> None:
    self.resets += 1


@pytest.fixture
def clock():
  return FakeClock()


@pytest.fixture
def transport():
  return FakeTransport()


@pytest.fixture
def vad():
  return ScriptedVad()


@pytest.fixture
def config():
  return WhisperLinkConfig()


@pytest.fixture
def open_session(config, transport, vad, clock):
  """Factory opening a session at 8kHz over the fake transport and detector."""

  def _open(**kwargs) -> RecognitionSession:
    return RecognitionSession.open(
      kwargs.pop("config", config),
      "PCMU",
      kwargs.pop("rate", 8000),
      transport_factory=lambda url, timeout: transport,
      vad_factory=lambda rate: vad,
      clock=clock,
      **kwargs,
    )

  return _open
