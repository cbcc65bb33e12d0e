import argparse
import os
import signal
import sys
import time
from pathlib import Path

import numpy as np
import soundfile as sf

from whisperlink.config import ConfigStore, get_env_bool, get_env_int, get_env_str
from whisperlink.constants import BYTES_PER_SAMPLE, LINEAR_PCM_CODEC, VAD_FRAME_MS
from whisperlink.engine import WhisperAsr
from whisperlink.errors import SessionSetupError
from whisperlink.logs import get_logger, setup_logging
from whisperlink.results import ResultStatus
from whisperlink.session import CheckStatus, FeedStatus, RecognitionSession


def _parameter(value: str) -> tuple[str, str]:
  key, sep, param = value.partition("=")
  if not sep:
    raise argparse.ArgumentTypeError(f"expected key=value, got {value!r}")
  return key.strip(), param.strip()


def read_pcm(path: Path) -> tuple[int, bytes]:
  """
  Load an audio file as 16-bit linear PCM.

  Any format libsndfile reads is accepted. Multi-channel audio is mixed down to mono.

  :returns: The sample rate and the raw little-endian samples.
  """
  audio, sample_rate = sf.read(path, dtype="int16")

  if audio.ndim > 1:
    get_logger("main").info("Mixed audio down to mono", channels=audio.shape[1])
    audio = np.mean(audio, axis=1)

  return sample_rate, audio.astype("<i2").tobytes()


def _drain_results(session: RecognitionSession) -> bool:
  """
  Pull everything the session has ready and print each payload.

  :returns: True once the session delivered its final or no-input result.
  """
  while True:
    match session.check_results():
      case CheckStatus.PENDING:
        delivery = session.get_results()
        if delivery.payload is not None:
          print(f"{delivery.status.value}: {delivery.payload}", flush=True)
        if delivery.delivered or delivery.status is ResultStatus.UNEXPECTED:
          return delivery.delivered
      case CheckStatus.CLOSED:
        return True
      case _:
        return False


def stream_file(
  session: RecognitionSession, pcm: bytes, frame_ms: int, tail_ms: int, realtime: bool
) -> bool:
  """
  Feed a recording through a session the way a call leg would, frame by frame.

  Silence is appended after the recording so trailing speech can end naturally.

  :returns: Whether a final or no-input result was delivered.
  """
  frame_size = session.sample_rate * frame_ms // 1000 * BYTES_PER_SAMPLE
  pcm += bytes(session.sample_rate * tail_ms // 1000 * BYTES_PER_SAMPLE)

  for offset in range(0, len(pcm), frame_size):
    if session.feed(pcm[offset : offset + frame_size]) is FeedStatus.BREAK:
      return False
    if _drain_results(session):
      return True
    if realtime:
      time.sleep(frame_ms / 1000.0)

  return False


def main(argv: list[str] | None = None) -> int:
  parser = argparse.ArgumentParser(
    description="Stream a recording through a whisperlink session and print the results."
  )
  parser.add_argument("audio", type=Path, help="Audio file readable by libsndfile, at most 16kHz.")
  parser.add_argument(
    "--config",
    type=str,
    default=get_env_str("WHISPERLINK_CONFIG", None),
    help="Path to the configuration file. (Env: WHISPERLINK_CONFIG)",
  )
  parser.add_argument(
    "--url",
    type=str,
    default=get_env_str("WHISPERLINK_URL", None),
    help="Backend websocket URL, overriding the configured one. (Env: WHISPERLINK_URL)",
  )
  parser.add_argument(
    "--param",
    type=_parameter,
    action="append",
    default=[],
    help="Session parameter as key=value, e.g. speech-timeout=8000. Repeatable.",
  )
  parser.add_argument(
    "--tail_ms",
    type=int,
    default=get_env_int("WHISPERLINK_TAIL_MS", 2000),
    help="Silence appended after the recording. (Env: WHISPERLINK_TAIL_MS)",
  )
  parser.add_argument(
    "--realtime",
    action="store_true",
    help="Pace frames at their real duration instead of as fast as possible.",
  )
  parser.add_argument(
    "--json_logs",
    action="store_true",
    default=get_env_bool("JSON_LOGS", False),
    help="Output logs in JSON format. (Env: JSON_LOGS)",
  )
  parser.add_argument(
    "--correlation_id",
    type=str,
    default=get_env_str("CORRELATION_ID", None),
    help="Correlation ID for log tracing. (Env: CORRELATION_ID)",
  )
  args = parser.parse_args(argv)

  log_level = os.getenv("LOG_LEVEL", "INFO").upper()
  setup_logging(level=log_level, json_output=args.json_logs, correlation_id=args.correlation_id)
  logger = get_logger("main")

  try:
    rate, pcm = read_pcm(args.audio)
  except (OSError, RuntimeError) as e:
    logger.error("Unable to read audio", path=str(args.audio), error=str(e))
    return 2

  engine = WhisperAsr(ConfigStore(args.config))
  engine.load()
  if hasattr(signal, "SIGHUP"):
    signal.signal(signal.SIGHUP, lambda _signum, _frame: engine.reload())

  max_rate = engine.store.current.session.max_sample_rate
  if rate > max_rate:
    logger.error("Recording sample rate is above the session maximum", rate=rate, max=max_rate)
    return 2

  logger.info("Starting whisperlink", audio=str(args.audio), rate=rate, config_path=args.config)
  try:
    session = engine.open_session(
      LINEAR_PCM_CODEC, rate, args.url, parameters=dict(args.param)
    )
  except SessionSetupError as e:
    logger.error("Unable to open session", error=str(e))
    return 1

  try:
    completed = stream_file(session, pcm, VAD_FRAME_MS, args.tail_ms, args.realtime)
  finally:
    session.close()

  if not completed:
    logger.warning("Session ended without a final result")
    return 1
  return 0


def run() -> None:
  try:
    sys.exit(main())
  except KeyboardInterrupt:
    pass


if __name__ == "__main__":
  run()
