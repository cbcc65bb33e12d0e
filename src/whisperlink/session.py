"""
Recognition session: the state machine behind one transcription stream.

A session is driven entirely from the host's call-processing thread. Every ``feed``
classifies a frame with the VAD, forwards speech to the backend in fixed-size blocks,
and briefly polls for an inbound transcript. Timeouts are detected on the host's
``check_results`` polling path, but the end-of-stream handshake they trigger always
runs on the next ``feed`` so that polling never blocks on the network.

There is no background thread. A ``close`` from another thread waits for any feed that
is talking to the backend to release the session lock, and every later feed breaks.
"""

import functools
import json
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, fields
from enum import StrEnum

from whisperlink.accumulator import AudioAccumulator
from whisperlink.config import WhisperLinkConfig
from whisperlink.constants import EOF_MESSAGE
from whisperlink.errors import SessionSetupError, TransportError
from whisperlink.format import Bytes, Milliseconds
from whisperlink.interfaces import (
  FrameKind,
  InboundFrame,
  Transport,
  TransportFactory,
  VadFactory,
  VadState,
  VoiceActivityDetector,
)
from whisperlink.logs import get_logger
from whisperlink.params import ParameterKey, SessionParameters, parse_parameter
from whisperlink.results import (
  NoInputPayload,
  RecognitionPayload,
  ResultDelivery,
  ResultStatus,
  render,
)
from whisperlink.vad import EnergyVoiceActivityDetector
from whisperlink.websocket import WebSocketTransport


class FeedStatus(StrEnum):
  OK = "ok"
  """Keep feeding."""

  BREAK = "break"
  """The session is closed or its connection broke. Stop feeding and close it."""


class CheckStatus(StrEnum):
  PENDING = "pending"
  """Something is ready; call ``get_results``."""

  NOT_YET = "not_yet"
  """Nothing to deliver yet."""

  FINALIZE = "finalize"
  """The speech timeout fired. The next ``feed`` finalizes the utterance."""

  CLOSED = "closed"
  """The session is closed or its final result was already delivered."""


@dataclass
class SessionFlags:
  """
  Orthogonal state bits of a session.

  These are deliberately independent booleans rather than a single enum: speech can
  have started while a result is already pending, and input timers stay armed across
  speech.
  """

  ready: bool = False
  """Frames are classified by the VAD and speech is forwarded."""

  input_timers: bool = False
  """The no-input timer is armed."""

  start_of_speech: bool = False
  """The VAD reported the start of speech."""

  returned_start_of_speech: bool = False
  """The start-of-speech notification was delivered to the host."""

  no_input_timeout: bool = False
  """The no-input deadline elapsed before any speech."""

  result: bool = False
  """A transcript is available for pulling."""

  returned_result: bool = False
  """The final deliverable was consumed. Nothing happens until a reset."""

  timeout: bool = False
  """The speech timeout fired and the next feed must finalize."""

  def clear(self) -> None:
    for field in fields(self):
      setattr(self, field.name, False)


def _default_vad_factory(sample_rate: int) -> VoiceActivityDetector:
  return EnergyVoiceActivityDetector(sample_rate, channels=1)


class RecognitionSession:
  """
  One speech-to-text stream between a call leg and the transcription backend.

  Construct sessions with ``open``. Resources (detector, audio accumulator, transport)
  are owned by the session from open until ``close`` and are never reused afterwards.
  """

  def __init__(
    self,
    config: WhisperLinkConfig,
    *,
    codec: str,
    sample_rate: int,
    destination: str,
    vad: VoiceActivityDetector,
    accumulator: AudioAccumulator,
    transport: Transport,
    clock: Callable[[], float] = time.monotonic,
    auto_resume: bool = False,
  ) -> None:
    self.config = config
    self.defaults = config.session
    self.codec = codec
    self.sample_rate = sample_rate
    self.auto_resume = auto_resume
    self.logger = get_logger("asr/session", destination=destination)

    self.vad: VoiceActivityDetector | None = vad
    self.accumulator: AudioAccumulator | None = accumulator
    self.transport: Transport | None = transport
    self._clock = clock

    self.params = SessionParameters.from_defaults(self.defaults)
    self.flags = SessionFlags()
    self.grammar: str | None = None
    self.result_text: str = self.defaults.default_text
    self.result_confidence: float = self.defaults.default_confidence
    self.partial_budget = 0
    self.no_input_started: float = clock()
    self.speech_started_at: float | None = None

    # Nested: the finalize handshake may run while the audio path holds the lock
    self._lock = threading.RLock()
    self._closing = False
    self._closed = False

    self._reset()

  @classmethod
  def open(
    cls,
    config: WhisperLinkConfig,
    codec: str,
    rate: int,
    destination: str | None = None,
    *,
    transport_factory: TransportFactory | None = None,
    vad_factory: VadFactory | None = None,
    clock: Callable[[], float] = time.monotonic,
    auto_resume: bool = False,
  ) -> "RecognitionSession":
    """
    Open a session and connect it to the backend.

    The codec is always renegotiated to linear PCM and the sample rate is capped at the
    configured maximum. The backend connection is established before returning.

    :param codec: Codec the host offered. Replaced by ``L16``.
    :param rate: Sample rate the host offered, in Hz.
    :param destination: Backend URL. Defaults to the configured server URL.
    :raises SessionSetupError: The detector, buffer or connection could not be set up.
        Nothing from the failed attempt remains open.
    """
    logger = get_logger("asr/session")
    url = destination or config.server_url
    defaults = config.session
    logger.info("Opening session", codec=codec, rate=rate, destination=url)

    if rate <= 0:
      raise SessionSetupError(f"Invalid sample rate {rate}")
    sample_rate = min(rate, defaults.max_sample_rate)

    try:
      vad = (vad_factory or _default_vad_factory)(sample_rate)
      vad.set_mode(defaults.vad_mode)
      vad.set_param("thresh", defaults.thresh)
      vad.set_param("silence_ms", defaults.silence_ms)
      vad.set_param("voice_ms", defaults.voice_ms)
      vad.set_param("debug", 1)
      accumulator = AudioAccumulator(defaults.audio_block_size)
    except ValueError as e:
      logger.error("Buffer create failed", error=str(e))
      raise SessionSetupError(f"Session setup failed: {e}") from e

    connect = transport_factory or functools.partial(
      WebSocketTransport.connect, max_size=config.transport.max_frame_size
    )
    try:
      transport = connect(url, config.transport.connect_timeout_ms / 1000.0)
    except TransportError as e:
      logger.error("Websocket connect failed", destination=url, error=str(e))
      raise SessionSetupError(f"Websocket connect to {url} failed") from e

    session = cls(
      config,
      codec=defaults.codec,
      sample_rate=sample_rate,
      destination=url,
      vad=vad,
      accumulator=accumulator,
      transport=transport,
      clock=clock,
      auto_resume=auto_resume,
    )
    session.logger.debug("ASR opened", codec=session.codec, sample_rate=sample_rate)
    return session

  @property
  def closed(self) -> bool:
    return self._closed

  def _reset(self) -> None:
    """Return to the post-open state. Configuration and grammar survive."""
    if self.vad is not None:
      self.vad.reset()
    self.flags.clear()
    self.result_text = self.defaults.default_text
    self.result_confidence = self.defaults.default_confidence
    self.flags.ready = True
    self.no_input_started = self._clock()
    self.speech_started_at = None
    if self.params.start_input_timers:
      self.flags.input_timers = True

  def load_grammar(self, grammar: str, name: str | None = None) -> bool:
    """Store an opaque grammar label that is echoed back in results."""
    if self._closed:
      self.logger.error("load_grammar attempt on closed session")
      return False

    self.logger.debug("Load grammar", grammar=grammar, name=name)
    self.grammar = grammar
    return True

  def unload_grammar(self, name: str | None = None) -> bool:
    """Accepted for host compatibility. The stored grammar label is kept."""
    return True

  def feed(self, frame: bytes) -> FeedStatus:
    """
    Process one frame of 16-bit linear PCM.

    Order matters: an auto-resume reset comes first, then a pending speech timeout is
    finalized, and only then is the frame classified.
    """
    if self._closed:
      return FeedStatus.BREAK

    if self.flags.returned_result and self.auto_resume:
      self.logger.debug("Auto resuming")
      self._reset()

    if self.flags.timeout:
      if not self._send_final_bit():
        return FeedStatus.BREAK
      self._finish_utterance()
      self.flags.timeout = False

    vad = self.vad
    if not self.flags.ready or vad is None:
      return FeedStatus.OK

    match vad.process(frame):
      case VadState.TALKING:
        return self._stream_audio(frame)
      case VadState.STOP_TALKING:
        if not self._send_final_bit():
          return FeedStatus.BREAK
        self._finish_utterance()
      case VadState.START_TALKING:
        self.flags.start_of_speech = True
        self.speech_started_at = self._clock()
        self.logger.debug("Start of speech")

    return FeedStatus.OK

  def _finish_utterance(self) -> None:
    self.flags.result = True
    self.flags.ready = False
    if self.vad is not None:
      self.vad.reset()

  def _stream_audio(self, frame: bytes) -> FeedStatus:
    """Buffer a speech frame, send a block once one is full, then poll for a transcript."""
    with self._lock:
      transport = self.transport
      accumulator = self.accumulator
      if self._closed or transport is None or accumulator is None:
        return FeedStatus.BREAK

      accumulator.append(frame)
      block = accumulator.drain_block()
      try:
        if block is not None:
          self.logger.debug("Sending data", size=str(Bytes(len(block))))
          transport.send_binary(block)

        inbound = self._poll_inbound(transport)
        if inbound is None:
          return FeedStatus.OK

        if inbound.kind is FrameKind.PING:
          self.logger.debug("Received ping")
          transport.send_pong(inbound.payload)
          return FeedStatus.OK
      except TransportError as e:
        self.logger.error("Backend stream broke", error=str(e))
        return FeedStatus.BREAK

      self.logger.debug("Received", size=len(inbound.payload), text=inbound.text)
      self.result_text = inbound.text
      return FeedStatus.OK

  def _poll_inbound(self, transport: Transport) -> InboundFrame | None:
    """Non-blocking check for a backend frame, bounded by the poll timeout."""
    if not transport.poll(self.config.transport.poll_timeout_ms / 1000.0):
      return None
    return transport.read_frame()

  def _send_final_bit(self) -> bool:
    """
    Ask the backend to finalize and wait for exactly one response frame.

    The response is taken as the transcript whatever its kind.
    """
    with self._lock:
      transport = self.transport
      if self._closed or transport is None:
        return False

      message = json.dumps(EOF_MESSAGE)
      self.logger.debug("Sending stop talking bit", message=message)
      try:
        transport.send_text(message)
        if not transport.poll(self.config.transport.final_timeout_ms / 1000.0):
          self.logger.error("Unable to poll for final message")
          return False
        frame = transport.read_frame()
      except TransportError as e:
        self.logger.error("Final handshake failed", error=str(e))
        return False

      self.logger.info("Final response", size=len(frame.payload), text=frame.text)
      self.result_text = frame.text
      return True

  def pause(self) -> bool:
    """Stop all processing without releasing resources."""
    if self._closed:
      self.logger.error("pause attempt on closed session")
      return False

    self.logger.debug("Pausing")
    self.flags.clear()
    return True

  def resume(self) -> bool:
    """Reset to the post-open state."""
    if self._closed:
      self.logger.error("resume attempt on closed session")
      return False

    self.logger.debug("Resuming")
    self._reset()
    return True

  def check_results(self) -> CheckStatus:
    """
    Evaluate timeouts and report whether ``get_results`` has something to deliver.

    Never touches the network. A speech timeout is only marked here; the finalize
    handshake runs on the next ``feed``.
    """
    flags = self.flags
    if flags.returned_result or self._closed:
      return CheckStatus.CLOSED

    if flags.start_of_speech and not flags.returned_start_of_speech:
      return CheckStatus.PENDING

    if not flags.result and not flags.no_input_timeout:
      now = self._clock()
      no_input_elapsed = Milliseconds.between(self.no_input_started, now)
      speech_started = now if self.speech_started_at is None else self.speech_started_at
      speech_elapsed = Milliseconds.between(speech_started, now)
      if (
        flags.input_timers
        and not flags.start_of_speech
        and self.params.no_input_timeout_ms >= 0
        and no_input_elapsed.value >= self.params.no_input_timeout_ms
      ):
        self.logger.debug("No input timeout", elapsed=str(no_input_elapsed))
        flags.no_input_timeout = True
      elif (
        not flags.timeout
        and flags.start_of_speech
        and self.params.speech_timeout_ms > 0
        and speech_elapsed.value >= self.params.speech_timeout_ms
      ):
        self.logger.debug("Speech timeout", elapsed=str(speech_elapsed))
        flags.timeout = True
        return CheckStatus.FINALIZE

    if flags.result or flags.no_input_timeout:
      return CheckStatus.PENDING
    return CheckStatus.NOT_YET

  def get_results(self) -> ResultDelivery:
    """
    Pull the current deliverable.

    Transcripts are delivered as partial while the partial budget lasts, then once as
    final. A final or no-input delivery ends processing until the session is reset.
    """
    flags = self.flags
    if flags.returned_result or self._closed:
      return ResultDelivery(ResultStatus.UNAVAILABLE)

    grammar = self.grammar or ""
    if flags.result:
      is_partial = self.partial_budget > 0
      if is_partial:
        self.partial_budget -= 1

      recognition = RecognitionPayload(
        grammar=grammar, text=self.result_text, confidence=self.result_confidence
      )
      payload = render(recognition, self.config.return_json)
      if is_partial:
        self.logger.info("Partial result", result=payload)
        return ResultDelivery(ResultStatus.PARTIAL, payload)

      self.logger.info("Final result", result=payload)
      delivery = ResultDelivery(ResultStatus.FINAL, payload)
    elif flags.no_input_timeout:
      self.logger.debug("Result: no input")
      delivery = ResultDelivery(
        ResultStatus.NO_INPUT, render(NoInputPayload(grammar=grammar), self.config.return_json)
      )
    elif flags.start_of_speech and not flags.returned_start_of_speech:
      flags.returned_start_of_speech = True
      self.logger.debug("Result: start of speech")
      return ResultDelivery(ResultStatus.START_OF_SPEECH)
    else:
      self.logger.error("Unexpected call to get_results, no results to return")
      return ResultDelivery(ResultStatus.UNEXPECTED)

    flags.returned_result = True
    flags.ready = False
    return delivery

  def start_input_timers(self) -> bool:
    """Arm the no-input timer if it is not already running."""
    if self._closed:
      self.logger.error("start_input_timers attempt on closed session")
      return False

    self.logger.debug("start_input_timers")
    if not self.flags.input_timers:
      self.flags.input_timers = True
      self.no_input_started = self._clock()
    else:
      self.logger.info("Input timers already started")
    return True

  def set_parameter(self, key: str, value: str) -> None:
    """Apply a host parameter. Unknown keys and invalid values are ignored."""
    update = parse_parameter(key, value)
    if update is None:
      return

    params = self.params
    match update.key:
      case ParameterKey.NO_INPUT_TIMEOUT:
        params.no_input_timeout_ms = update.value
      case ParameterKey.SPEECH_TIMEOUT:
        params.speech_timeout_ms = update.value
      case ParameterKey.START_INPUT_TIMERS:
        params.start_input_timers = update.value
        self.flags.input_timers = update.value
      case ParameterKey.VAD_MODE:
        params.vad_mode = update.value
        if self.vad is not None:
          self.vad.set_mode(update.value)
      case ParameterKey.VAD_VOICE_MS:
        params.voice_ms = update.value
        self._tune_vad("voice_ms", update.value)
      case ParameterKey.VAD_SILENCE_MS:
        params.silence_ms = update.value
        self._tune_vad("silence_ms", update.value)
      case ParameterKey.VAD_THRESH:
        params.thresh = update.value
        self._tune_vad("thresh", update.value)
      case ParameterKey.CHANNEL_UUID:
        params.channel_uuid = update.value
        self.logger = self.logger.bind(channel=update.value)
      case ParameterKey.RESULT:
        self.result_text = update.value
      case ParameterKey.CONFIDENCE:
        self.result_confidence = update.value
      case ParameterKey.PARTIAL:
        self.partial_budget = self.defaults.partial_count

    self.logger.debug("Parameter set", name=update.key.value, value=update.value)

  def _tune_vad(self, name: str, value: int) -> None:
    if self.vad is not None:
      self.vad.set_param(name, value)

  def close(self) -> bool:
    """
    Tear down the connection, the audio buffer and the detector.

    The connection and buffer are released under the session lock; the session is only
    marked closed after the lock is released.

    :returns: False when the session was already closed.
    """
    if self._closed:
      self.logger.debug("Double ASR close")
      return False

    with self._lock:
      if self._closing:
        self.logger.debug("Double ASR close")
        return False
      self._closing = True

      transport, self.transport = self.transport, None
      if transport is not None:
        try:
          transport.close()
        except TransportError as e:
          self.logger.warning("Transport close failed", error=str(e))

      if self.accumulator is not None:
        self.accumulator.clear()
        self.accumulator = None

    self._closed = True
    self.vad = None
    self.logger.debug("ASR session closed")
    return True
