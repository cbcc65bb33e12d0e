"""
Session parameter parsing.

Hosts tune sessions with string key/value pairs. This module turns those pairs into
typed updates, applying the host's number and boolean conventions; the session decides
what each update does to its live state.
"""

import re
from dataclasses import dataclass
from enum import StrEnum

from whisperlink.config import SessionDefaults

_INT_PREFIX = re.compile(r"^\s*([+-]?\d+)")
_FLOAT_PREFIX = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
_NUMBER = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)$")
_TRUE_WORDS = frozenset({"yes", "on", "true", "t", "enabled", "active", "allow"})


class ParameterKey(StrEnum):
  NO_INPUT_TIMEOUT = "no-input-timeout"
  SPEECH_TIMEOUT = "speech-timeout"
  START_INPUT_TIMERS = "start-input-timers"
  VAD_MODE = "vad-mode"
  VAD_VOICE_MS = "vad-voice-ms"
  VAD_SILENCE_MS = "vad-silence-ms"
  VAD_THRESH = "vad-thresh"
  CHANNEL_UUID = "channel-uuid"
  RESULT = "result"
  CONFIDENCE = "confidence"
  PARTIAL = "partial"


@dataclass
class SessionParameters:
  """Live tunables of one session. Mutated by parameter updates at any time."""

  thresh: int
  silence_ms: int
  voice_ms: int
  vad_mode: int
  no_input_timeout_ms: int
  speech_timeout_ms: int
  start_input_timers: bool
  channel_uuid: str | None = None

  @classmethod
  def from_defaults(cls, defaults: SessionDefaults) -> "SessionParameters":
    return cls(
      thresh=defaults.thresh,
      silence_ms=defaults.silence_ms,
      voice_ms=defaults.voice_ms,
      vad_mode=defaults.vad_mode,
      no_input_timeout_ms=defaults.no_input_timeout_ms,
      speech_timeout_ms=defaults.speech_timeout_ms,
      start_input_timers=defaults.start_input_timers,
    )


@dataclass(frozen=True)
class ParameterUpdate:
  """A recognized, validated parameter with its typed value."""

  key: ParameterKey
  value: int | float | bool | str


def parse_int(value: str) -> int:
  """Parse a leading integer the way C ``atoi`` does; anything unparsable is 0."""
  match = _INT_PREFIX.match(value)
  return int(match.group(1)) if match else 0


def parse_float(value: str) -> float:
  """Parse a leading float the way C ``atof`` does; anything unparsable is 0.0."""
  match = _FLOAT_PREFIX.match(value)
  return float(match.group(1)) if match else 0.0


def is_number(value: str) -> bool:
  """Whether the whole string is a (signed, optionally decimal) number."""
  return bool(_NUMBER.match(value))


def is_true(value: str | None) -> bool:
  """Host truthiness: a known affirmative word or a non-zero integer."""
  if not value:
    return False
  if value.strip().lower() in _TRUE_WORDS:
    return True
  return is_number(value) and parse_int(value) != 0


def parse_parameter(key: str, value: str) -> ParameterUpdate | None:
  """
  Validate a host parameter.

  Keys match case-insensitively. Empty keys or values, unknown keys, and values that
  fail their key's validation yield None and must be ignored by the caller.
  """
  if not key or not value:
    return None

  try:
    name = ParameterKey(key.lower())
  except ValueError:
    return None

  int_value = parse_int(value)

  match name:
    case ParameterKey.NO_INPUT_TIMEOUT | ParameterKey.SPEECH_TIMEOUT:
      if not is_number(value):
        return None
      return ParameterUpdate(name, int_value)
    case ParameterKey.START_INPUT_TIMERS:
      return ParameterUpdate(name, is_true(value))
    case ParameterKey.VAD_MODE:
      return ParameterUpdate(name, int_value)
    case ParameterKey.VAD_VOICE_MS | ParameterKey.VAD_SILENCE_MS | ParameterKey.VAD_THRESH:
      if int_value <= 0:
        return None
      return ParameterUpdate(name, int_value)
    case ParameterKey.CHANNEL_UUID | ParameterKey.RESULT:
      return ParameterUpdate(name, value)
    case ParameterKey.CONFIDENCE:
      confidence = parse_float(value)
      if confidence < 0.0:
        return None
      return ParameterUpdate(name, confidence)
    case ParameterKey.PARTIAL:
      if not is_true(value):
        return None
      return ParameterUpdate(name, True)
