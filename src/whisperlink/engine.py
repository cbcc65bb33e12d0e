"""
The ASR interface a host registers once per process.

Owns the configuration store and opens sessions from its current snapshot. Reloading
swaps the snapshot; sessions already open keep the configuration they started with.
"""

import time
from collections.abc import Callable, Mapping

from whisperlink.config import ConfigStore
from whisperlink.constants import INTERFACE_NAME
from whisperlink.format import Pretty
from whisperlink.interfaces import TransportFactory, VadFactory
from whisperlink.logs import get_logger
from whisperlink.session import RecognitionSession


class WhisperAsr:
  interface_name = INTERFACE_NAME

  def __init__(
    self,
    store: ConfigStore,
    *,
    transport_factory: TransportFactory | None = None,
    vad_factory: VadFactory | None = None,
    clock: Callable[[], float] = time.monotonic,
  ) -> None:
    self.logger = get_logger("asr")
    self.store = store
    self._transport_factory = transport_factory
    self._vad_factory = vad_factory
    self._clock = clock

  def load(self) -> None:
    """Read the configuration for the first time and log it."""
    config = self.store.reload()
    config.pretty_print()
    self.logger.info("ASR interface loaded", interface=self.interface_name)

  def reload(self) -> bool:
    """
    Handle a host reload signal.

    :returns: Whether the configuration was re-read. Nothing happens when auto-reload is
        turned off in the current configuration.
    """
    if not self.store.current.auto_reload:
      self.logger.debug("Reload ignored, auto_reload is off")
      return False

    self.store.reload()
    self.logger.info("Whisper reloaded")
    return True

  def open_session(
    self,
    codec: str,
    rate: int,
    destination: str | None = None,
    *,
    auto_resume: bool = False,
    parameters: Mapping[str, str] | None = None,
  ) -> RecognitionSession:
    """
    Open a session from the current configuration and apply the host's parameters.

    :raises SessionSetupError: See ``RecognitionSession.open``.
    """
    session = RecognitionSession.open(
      self.store.current,
      codec,
      rate,
      destination,
      transport_factory=self._transport_factory,
      vad_factory=self._vad_factory,
      clock=self._clock,
      auto_resume=auto_resume,
    )

    if parameters:
      self.logger.debug("Applying session parameters", parameters=Pretty(dict(parameters)))
      for key, value in parameters.items():
        session.set_parameter(key, value)

    return session
