"""
Energy-based voice activity detection over 16-bit linear PCM.

The detector is fed one 20ms frame at a time and reports transitions rather than raw
scores: the start of speech once enough consecutive frames score above the threshold,
and the end of speech once silence outlasts the hangover. A recognition session uses
those transitions to decide what reaches the backend and when to ask for a final
transcript.
"""

import numpy as np

from whisperlink.constants import VAD_FRAME_MS
from whisperlink.interfaces import VadState
from whisperlink.logs import get_logger


class EnergyVoiceActivityDetector:
  """
  Energy-scoring voice activity detector for 16-bit linear PCM.

  Each frame is scored by its mean absolute amplitude, scaled by ``sample_rate / 8000``
  so thresholds mean the same thing at 8kHz and 16kHz. A frame at or above ``thresh``
  starts (or sustains) talking. Talking ends once ``silence_ms`` worth of frames have
  scored below the threshold. ``STOP_TALKING`` is only reported when the talk lasted
  longer than ``voice_ms``; shorter blips fall back to ``NONE`` silently.

  Millisecond parameters are converted to frame counts assuming 20ms frames.
  """

  def __init__(self, sample_rate: int = 16000, channels: int = 1) -> None:
    self.logger = get_logger("vad")
    self.sample_rate = sample_rate or 8000
    self.channels = max(1, channels)
    self.mode = -1
    self.debug = 0

    # Configured values, restored on every reset
    self._thresh = 100
    self._hangover_len = 25
    self._listen_hits = 10

    self.reset()

  def reset(self) -> None:
    self.talking = False
    self.talked = False
    self.talk_hits = 0
    self.hangover = 0
    self.thresh = self._thresh
    self.hangover_len = self._hangover_len
    self.listen_hits = self._listen_hits
    self.divisor = max(1, self.sample_rate // 8000)
    self.state = VadState.NONE

  def set_mode(self, mode: int) -> None:
    self.mode = mode
    if mode >= 0:
      self.logger.debug("Detector mode has no model backing it, scoring by energy", mode=mode)

  def set_param(self, name: str, value: int) -> None:
    match name:
      case "thresh":
        self._thresh = self.thresh = value
      case "silence_ms":
        self._hangover_len = self.hangover_len = value // VAD_FRAME_MS
      case "voice_ms":
        self._listen_hits = self.listen_hits = value // VAD_FRAME_MS
      case "hangover_len":
        self._hangover_len = self.hangover_len = value
      case "listen_hits":
        self._listen_hits = self.listen_hits = value
      case "debug":
        self.debug = value
      case _:
        self.logger.warning("Unknown VAD parameter", name=name, value=value)

  def score(self, frame: bytes) -> int:
    """Mean absolute amplitude of the first channel, scaled to an 8kHz equivalent."""
    usable = len(frame) - len(frame) % 2
    samples = np.frombuffer(frame[:usable], dtype="<i2")[:: self.channels]
    if samples.size == 0:
      return 0

    energy = int(np.abs(samples.astype(np.int32)).sum())
    return energy // max(1, samples.size // self.divisor)

  def process(self, frame: bytes) -> VadState:
    # Edge states only last for one frame
    if self.state is VadState.STOP_TALKING:
      self.state = VadState.NONE
    elif self.state is VadState.START_TALKING:
      self.state = VadState.TALKING

    score = self.score(frame)

    if self.talking and score < self.thresh:
      if self.hangover > 0:
        self.hangover -= 1
      else:
        self.talking = False
        self.talk_hits = 0
        self.hangover = 0
    elif score >= self.thresh:
      self.state = VadState.TALKING if self.talking else VadState.START_TALKING
      self.talking = True
      self.hangover = self.hangover_len

    if self.talking:
      self.talk_hits += 1
      if self.talk_hits > self.listen_hits:
        self.talked = True
        if self.state is not VadState.START_TALKING:
          self.state = VadState.TALKING
    else:
      self.talk_hits = 0
      if not self.talked:
        self.state = VadState.NONE

    if self.talked and not self.talking:
      self.talked = False
      self.state = VadState.STOP_TALKING

    if self.debug > 9:
      self.logger.debug("VAD frame", score=score, thresh=self.thresh, state=self.state.value)

    return self.state
