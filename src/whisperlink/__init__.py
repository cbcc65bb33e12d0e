"""whisperlink: stream VAD-segmented call audio to a websocket transcription backend."""

from whisperlink.config import ConfigStore, WhisperLinkConfig
from whisperlink.engine import WhisperAsr
from whisperlink.errors import SessionSetupError, TransportError, TransportTimeout
from whisperlink.results import ResultDelivery, ResultStatus
from whisperlink.session import CheckStatus, FeedStatus, RecognitionSession

__version__ = "0.1.0"

__all__ = [
  "CheckStatus",
  "ConfigStore",
  "FeedStatus",
  "RecognitionSession",
  "ResultDelivery",
  "ResultStatus",
  "SessionSetupError",
  "TransportError",
  "TransportTimeout",
  "WhisperAsr",
  "WhisperLinkConfig",
  "__version__",
]
