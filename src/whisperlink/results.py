"""
Result payloads delivered to the host.

The host framework expects JSON shaped as ``{"grammar", "text", "confidence"}`` for
recognition results, with an extra ``"error": "no_input"`` when nobody spoke.
"""

from dataclasses import dataclass
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field

from whisperlink.constants import NO_INPUT_ERROR


class RecognitionPayload(BaseModel):
  """A transcript for the current utterance, partial or final."""

  grammar: str = ""
  """Grammar label loaded by the host, echoed back unchanged."""

  text: str
  """Transcript text as received from the backend."""

  confidence: float = Field(ge=0.0)
  """Confidence score."""


class NoInputPayload(BaseModel):
  """Reported when the no-input timer fires before any speech."""

  grammar: str = ""
  text: Literal[""] = ""
  confidence: Literal[0] = 0
  error: Literal["no_input"] = NO_INPUT_ERROR


def render(payload: RecognitionPayload | NoInputPayload, as_json: bool = True) -> str:
  """
  Serialize a payload for the host.

  :param as_json: When false only the transcript text is returned.
  """
  if not as_json:
    return payload.text
  return payload.model_dump_json()


class ResultStatus(StrEnum):
  """Outcome of pulling results from a session."""

  PARTIAL = "partial"
  """A transcript was delivered and more will follow for this utterance."""

  FINAL = "final"
  """The final transcript was delivered. The session stops until it is reset."""

  NO_INPUT = "no_input"
  """The no-input timer fired. The session stops until it is reset."""

  START_OF_SPEECH = "start_of_speech"
  """Speech started. No payload; the host should keep polling."""

  UNAVAILABLE = "unavailable"
  """The session is closed or already delivered its final result."""

  UNEXPECTED = "unexpected"
  """Nothing was pending. The host pulled without a pending check."""


@dataclass(frozen=True)
class ResultDelivery:
  status: ResultStatus
  payload: str | None = None

  @property
  def delivered(self) -> bool:
    """Whether this pull consumed the session's deliverable for the utterance."""
    return self.status in (ResultStatus.FINAL, ResultStatus.NO_INPUT)
