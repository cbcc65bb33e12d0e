from typing import NamedTuple

from rich.pretty import pretty_repr


class Pretty(NamedTuple):
  value: object

  def __str__(self) -> str:
    return pretty_repr(self.value)


class Unit(NamedTuple):
  value: float


class Seconds(Unit):
  def __str__(self) -> str:
    return f"{self.value:.3f}s"


class Milliseconds(Unit):
  def __str__(self) -> str:
    return f"{self.value:.0f}ms"

  @classmethod
  def between(cls, start: float, end: float) -> "Milliseconds":
    """Elapsed milliseconds between two clock readings taken in seconds."""
    return cls((end - start) * 1000.0)


class Bytes(Unit):
  def __str__(self) -> str:
    return f"{int(self.value)}B"
