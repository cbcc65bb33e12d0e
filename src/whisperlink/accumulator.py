"""
Audio accumulation for the outbound websocket stream.

Coalesces the small frames a host delivers (typically 20ms) into fixed-size blocks so
the backend receives fewer, larger binary frames.
"""

from whisperlink.logs import get_logger


class AudioAccumulator:
  """
  A FIFO byte buffer that releases audio one fixed-size block at a time.

  Thread Safety:
    Not internally locked. The owning session serializes access under its own lock,
    which also covers the network write the drained block is destined for.
  """

  def __init__(self, block_size: int = 3200) -> None:
    """
    :param
        block_size: Bytes per drained block. Must be positive.
    """
    if block_size <= 0:
      raise ValueError(f"block_size must be positive (got {block_size})")

    self.block_size = block_size
    self.logger = get_logger("snd/acc")
    self._buffer = bytearray()

  def append(self, frame: bytes) -> None:
    """Append a frame of raw PCM to the end of the buffer."""
    self._buffer.extend(frame)

  def drain_block(self) -> bytes | None:
    """
    Remove and return exactly one block from the front of the buffer.

    A block is only released once the buffered length is strictly greater than the
    block size, so the buffer never drains below one block's worth of audio.

    :returns:
        ``block_size`` bytes in arrival order, or None when not enough audio is buffered.
    """
    if len(self._buffer) <= self.block_size:
      return None

    block = bytes(self._buffer[: self.block_size])
    del self._buffer[: self.block_size]
    return block

  def clear(self) -> None:
    """Discard all buffered audio."""
    if self._buffer:
      self.logger.debug("Discarding buffered audio", size=len(self._buffer))
    self._buffer.clear()

  def __len__(self) -> int:
    return len(self._buffer)
