import os
import threading
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, validate_call
from pydantic.dataclasses import dataclass
from pydantic.types import FilePath

from whisperlink.constants import LINEAR_PCM_CODEC
from whisperlink.format import Milliseconds
from whisperlink.logs import get_logger

logger = get_logger("cfg")

DEFAULT_SERVER_URL = "ws://127.0.0.1:2700"


@dataclass
class TransportConfig:
  """Timeouts and limits for the backend websocket connection."""

  connect_timeout_ms: int = Field(default=30000, gt=0)
  """Upper bound on the TCP connect plus websocket upgrade."""

  poll_timeout_ms: int = Field(default=5, gt=0)
  """Inbound poll after each audio write. Keeps the audio feed path non-blocking."""

  final_timeout_ms: int = Field(default=60000, gt=0)
  """Wait for the transcript after the end-of-stream frame has been sent."""

  max_frame_size: int = Field(default=1 << 20, gt=0)
  """Largest inbound message accepted from the backend, in bytes."""


class SessionDefaults(BaseModel):
  """Values every new session starts from. Hosts re-tune them per session with parameters."""

  thresh: int = Field(default=400, gt=0)
  """VAD energy threshold."""

  silence_ms: int = Field(default=700, gt=0)
  """Trailing silence that ends an utterance."""

  voice_ms: int = Field(default=60, gt=0)
  """Voiced audio required before an utterance counts as speech."""

  vad_mode: int = -1
  """Detector mode forwarded to the VAD. Negative selects pure energy scoring."""

  start_input_timers: bool = True
  """Whether the no-input timer is armed on open and on every reset."""

  no_input_timeout_ms: int = 5000
  """No-input threshold. Negative disables the timer."""

  speech_timeout_ms: int = 10000
  """Maximum speech duration. Only evaluated when positive."""

  partial_count: int = Field(default=3, ge=0)
  """Number of partial deliveries armed by the ``partial`` parameter."""

  default_confidence: float = Field(default=87.3, ge=0.0)
  """Confidence reported for backend results unless overridden."""

  default_text: str = ""
  """Result text a session starts with before the backend says anything."""

  audio_block_size: int = Field(default=3200, gt=0)
  """Bytes of audio sent per binary frame. 3200 bytes is 100ms of 16kHz mono L16."""

  max_sample_rate: int = Field(default=16000, gt=0)
  """Rates above this are renegotiated down on open."""

  codec: str = LINEAR_PCM_CODEC
  """Codec every session is renegotiated to."""

  @field_validator("codec")
  @classmethod
  def validate_codec(cls, value: str) -> str:
    if value != LINEAR_PCM_CODEC:
      raise ValueError(f"codec must be {LINEAR_PCM_CODEC} (got {value!r})")
    return value


class WhisperLinkConfig(BaseModel):
  """Top-level configuration handed by reference to every session at construction."""

  server_url: str = DEFAULT_SERVER_URL
  """Backend websocket URL used when the host does not pass a destination."""

  return_json: bool = True
  """Deliver results as JSON payloads. When false only the transcript text is delivered."""

  auto_reload: bool = True
  """Whether a host reload signal re-reads the configuration file."""

  transport: TransportConfig = Field(default_factory=TransportConfig)
  """Backend connection configuration."""

  session: SessionDefaults = Field(default_factory=SessionDefaults)
  """Per-session defaults."""

  @field_validator("server_url")
  @classmethod
  def validate_server_url(cls, value: str) -> str:
    if not value.startswith(("ws://", "wss://")):
      raise ValueError(f"server_url must be a ws:// or wss:// URL (got {value!r})")
    return value

  def pretty_print(self) -> None:
    """Log every configuration value at INFO level, defaults included."""
    logger.info("=" * 60)
    logger.info("WHISPERLINK CONFIGURATION")
    logger.info("=" * 60)

    logger.info(f"  Server URL: {self.server_url}")
    logger.info(f"  Return JSON: {self.return_json}")
    logger.info(f"  Auto Reload: {self.auto_reload}")

    logger.info("TRANSPORT SETTINGS:")
    logger.info(f"  Connect Timeout: {Milliseconds(self.transport.connect_timeout_ms)}")
    logger.info(f"  Poll Timeout: {Milliseconds(self.transport.poll_timeout_ms)}")
    logger.info(f"  Final Timeout: {Milliseconds(self.transport.final_timeout_ms)}")
    logger.info(f"  Max Frame Size: {self.transport.max_frame_size}")

    logger.info("SESSION DEFAULTS:")
    for name, value in self.session.model_dump().items():
      logger.info(f"  {name}: {value}")

    logger.info("=" * 60)


@validate_call
def load_config_from_file(config_path: FilePath) -> WhisperLinkConfig:
  """Load and validate whisperlink configuration from a YAML file."""

  logger.info("Loading whisperlink configuration", path=str(config_path))

  try:
    with open(config_path, "r", encoding="utf-8") as file:
      config_data = yaml.safe_load(file)
  except yaml.YAMLError as e:
    raise ValueError(f"Invalid YAML in configuration file: {e}") from e
  except OSError as e:
    raise ValueError(f"Error reading configuration file: {e}") from e

  if config_data is None:
    raise ValueError("Configuration file is empty")

  if not isinstance(config_data, dict):
    raise ValueError("Configuration file must contain a YAML dictionary")

  return WhisperLinkConfig.model_validate(config_data)


class ConfigStore:
  """
  Process-wide holder for the active configuration.

  Sessions take a snapshot when they are opened; ``reload`` swaps in a new snapshot
  without touching sessions that are already running.
  """

  def __init__(self, path: Path | str | None = None) -> None:
    self.path = Path(path) if path is not None else None
    self._lock = threading.Lock()
    self._config = WhisperLinkConfig()

  @property
  def current(self) -> WhisperLinkConfig:
    with self._lock:
      return self._config

  def reload(self) -> WhisperLinkConfig:
    """
    Re-read the configuration file.

    A missing or broken file is logged and leaves the built-in defaults in place, so the
    bridge always ends up with a usable server URL.
    """
    config = WhisperLinkConfig()
    if self.path is None:
      logger.debug("No configuration file, using defaults")
    else:
      try:
        config = load_config_from_file(self.path)
      except (ValueError, ValidationError) as e:
        logger.error(
          "Open of configuration failed, using defaults", path=str(self.path), error=str(e)
        )

    with self._lock:
      self._config = config
    return config


def get_env_str(key: str, default: str | None) -> str | None:
  """Get a string from an environment variable."""
  return os.getenv(key, default)


def get_env_int(key: str, default: int) -> int:
  """Get an int from an environment variable."""
  try:
    return int(os.getenv(key, str(default)))
  except ValueError:
    return default


def get_env_bool(key: str, default: bool) -> bool:
  """Get a bool from an environment variable."""
  return os.getenv(key, str(default)).lower() in ("true", "1", "yes", "on")
