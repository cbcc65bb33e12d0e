"""
Constants for the whisperlink bridge.

These values describe the wire contract with the transcription backend and are not
configurable through the config file or CLI arguments.
"""

INTERFACE_NAME = "whisper"
"""Name the ASR interface is registered under by the host."""

LINEAR_PCM_CODEC = "L16"
"""The only codec the bridge accepts; hosts are renegotiated to it on open."""

BYTES_PER_SAMPLE = 2
"""Signed 16-bit little-endian samples."""

EOF_MESSAGE = {"eof": "true"}
"""Text frame asking the backend to finalize the current utterance."""

NO_INPUT_ERROR = "no_input"
"""Error marker carried by the no-input result payload."""

VAD_FRAME_MS = 20
"""Frame period the VAD converts its millisecond parameters against."""
