"""Centralized logging configuration for whisperlink using structlog."""

import logging
import time
from typing import Any

import numpy as np
import structlog
from structlog.dev import BRIGHT, DIM, RESET_ALL, Column, ConsoleRenderer, KeyValueColumnFormatter
from structlog.typing import EventDict, Processor, WrappedLogger

_PROGRAM_START_TIME = time.time()

_LEVEL_TAGS = {
  "debug": "dbug",
  "info": "info",
  "warning": "warn",
  "error": "eror",
  "exception": "exc!",
  "critical": "crit",
}


def hex_to_ansi_fg(hex_color: int) -> str:
  """Convert hex color (e.g., 0xad8a89) to ANSI 24-bit foreground escape code."""
  r = (hex_color >> 16) & 0xFF
  g = (hex_color >> 8) & 0xFF
  b = hex_color & 0xFF
  return f"\x1b[38;2;{r};{g};{b}m"


class FloatPrecisionProcessor:
  """
  A structlog processor for rounding floats, either as single numbers or inside lists,
  dicts and numpy arrays. Timing fields on the audio path are otherwise unreadable.
  """

  def __init__(self, digits: int = 3, not_fields: frozenset[str] = frozenset()):
    """
    :param digits: The number of digits to round to
    :param not_fields: Fields that are passed through untouched
    """
    self.digits = digits
    self.not_fields = not_fields

  def _round(self, value: Any):
    if isinstance(value, float):
      return round(value, self.digits)
    if isinstance(value, np.ndarray):
      return self._round(value.tolist())
    if isinstance(value, list):
      return [self._round(item) for item in value]
    if isinstance(value, dict):
      return {k: self._round(v) for k, v in value.items()}
    return value

  def __call__(self, _: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    for key, value in event_dict.items():
      if key in self.not_fields or isinstance(value, bool):
        continue
      event_dict[key] = self._round(value)
    return event_dict


def _relative_time_processor(
  _logger: WrappedLogger, _method_name: str, event_dict: EventDict
) -> EventDict:
  """Stamp each event with the time elapsed since the program started."""
  elapsed = time.time() - _PROGRAM_START_TIME
  minutes, seconds = divmod(elapsed, 60)
  event_dict["timestamp"] = f"+{int(minutes):02d}:{seconds:06.3f}"
  return event_dict


def _compact_level_processor(
  _logger: WrappedLogger, _method_name: str, event_dict: EventDict
) -> EventDict:
  """Shorten log levels to a fixed four-character tag."""
  level = event_dict.get("level")
  if level in _LEVEL_TAGS:
    event_dict["level"] = f"[{_LEVEL_TAGS[level]}]"
  return event_dict


def _console_renderer() -> ConsoleRenderer:
  logger_name_formatter = KeyValueColumnFormatter(
    key_style=None,
    value_style=hex_to_ansi_fg(0x7D6B95),
    reset_style=RESET_ALL,
    value_repr=str,
    prefix="[",
    postfix="]",
  )
  return ConsoleRenderer(
    colors=True,
    columns=[
      Column(
        "",
        KeyValueColumnFormatter(
          key_style=hex_to_ansi_fg(0x6E6A86),
          value_style=hex_to_ansi_fg(0xF6C177),
          reset_style=RESET_ALL,
          value_repr=str,
        ),
      ),
      Column(
        "timestamp",
        KeyValueColumnFormatter(
          key_style=None, value_style=DIM, reset_style=RESET_ALL, value_repr=str
        ),
      ),
      Column(
        "level",
        KeyValueColumnFormatter(
          key_style=None, value_style="", reset_style=RESET_ALL, value_repr=str
        ),
      ),
      Column("logger", logger_name_formatter),
      Column(
        "event",
        KeyValueColumnFormatter(
          key_style=None, value_style=BRIGHT, reset_style=RESET_ALL, value_repr=str, width=30
        ),
      ),
    ],
  )


def setup_logging(
  level: str = "INFO", json_output: bool = False, correlation_id: str | None = None
) -> None:
  """Configure structured logging for the application."""

  shared_processors: list[Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.filter_by_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.stdlib.ExtraAdder(),
    FloatPrecisionProcessor(digits=3),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
  ]

  if correlation_id:
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

  if json_output:
    shared_processors.append(structlog.processors.TimeStamper(fmt="iso"))
    log_renderer: Processor = structlog.processors.JSONRenderer()
  else:
    shared_processors += [_compact_level_processor, _relative_time_processor]
    log_renderer = _console_renderer()

  structlog.configure(
    processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
  )

  formatter = structlog.stdlib.ProcessorFormatter(
    foreign_pre_chain=shared_processors,
    processors=[
      structlog.stdlib.ProcessorFormatter.remove_processors_meta,
      log_renderer,
    ],
  )

  handler = logging.StreamHandler()
  handler.setFormatter(formatter)
  root_logger = logging.getLogger()
  root_logger.handlers.clear()
  root_logger.addHandler(handler)
  root_logger.setLevel(level)

  # The websockets library is chatty at DEBUG about every frame
  websockets_logger = logging.getLogger("websockets")
  websockets_logger.handlers.clear()
  websockets_logger.setLevel(logging.WARNING)
  websockets_logger.propagate = True


def get_logger(name: str | None = None, **initial_values: Any) -> structlog.stdlib.BoundLogger:
  """Get a structured logger instance."""
  return structlog.get_logger(name, **initial_values)

