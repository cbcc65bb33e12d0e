"""
WebSocket transport to the transcription backend.

Drives the ``websockets`` sans-I/O client protocol over a blocking socket so that every
read and write happens on the calling thread, within the bound the caller chooses. The
session's hot path relies on this: it polls for a few milliseconds after each audio
write and never waits on a background reader.
"""

import select
import socket
import ssl
import time
from collections import deque

from websockets.client import ClientProtocol
from websockets.exceptions import InvalidState, InvalidURI
from websockets.frames import Close, Frame, Opcode
from websockets.http11 import Response
from websockets.protocol import State
from websockets.uri import parse_uri

from whisperlink.errors import TransportError, TransportTimeout
from whisperlink.format import Seconds
from whisperlink.interfaces import FrameKind, InboundFrame
from whisperlink.logs import get_logger

RECV_BUFFER_SIZE = 65536

_DATA_KINDS = {Opcode.TEXT: FrameKind.TEXT, Opcode.BINARY: FrameKind.BINARY}


class WebSocketTransport:
  """
  A synchronous websocket client connection with explicit, bounded waits.

  Inbound pings are surfaced as ``FrameKind.PING`` frames. The protocol layer queues
  the matching pong as soon as the ping is parsed; ``send_pong`` flushes it, so the
  peer sees exactly one pong per ping. Any other write also flushes queued pongs.

  Closing is unilateral: a close frame is sent but the peer's acknowledgment is not
  awaited.
  """

  def __init__(self, sock: socket.socket, protocol: ClientProtocol, timeout: float) -> None:
    """
    :param sock: Connected socket, already wrapped in TLS for ``wss://``.
    :param protocol: Client protocol bound to the target URI.
    :param timeout: Bound on blocking reads and writes, in seconds.
    """
    self.logger = get_logger("ws/transport")
    self.protocol = protocol
    self.timeout = timeout
    self._sock = sock
    self._frames: deque[InboundFrame] = deque()
    self._pending_pongs: deque[bytes] = deque(maxlen=32)
    self._fragment_kind: FrameKind | None = None
    self._fragments = bytearray()
    self._closed = False

  @classmethod
  def connect(
    cls, url: str, timeout: float, max_size: int | None = 1 << 20
  ) -> "WebSocketTransport":
    """
    Open a connection and complete the websocket upgrade within ``timeout`` seconds.

    :raises TransportError: The URL is invalid, the TCP connection failed, or the server
        rejected the upgrade.
    :raises TransportTimeout: The upgrade did not complete in time.
    """
    try:
      uri = parse_uri(url)
    except InvalidURI as e:
      raise TransportError(f"Invalid backend URL {url!r}: {e}") from e

    started = time.monotonic()
    deadline = started + timeout
    try:
      sock = socket.create_connection((uri.host, uri.port), timeout=timeout)
      sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
      if uri.secure:
        context = ssl.create_default_context()
        sock = context.wrap_socket(sock, server_hostname=uri.host)
    except OSError as e:
      raise TransportError(f"Websocket connect to {url} failed: {e}") from e

    transport = cls(sock, ClientProtocol(uri, max_size=max_size), timeout)
    try:
      transport._handshake(deadline)
    except TransportError:
      sock.close()
      raise

    elapsed = Seconds(time.monotonic() - started)
    transport.logger.debug("Websocket connected", url=url, elapsed=str(elapsed))
    return transport

  def _handshake(self, deadline: float) -> None:
    self.protocol.send_request(self.protocol.connect())
    self._flush()

    while self.protocol.state is State.CONNECTING and self.protocol.handshake_exc is None:
      remaining = deadline - time.monotonic()
      if remaining <= 0:
        raise TransportTimeout("Websocket handshake timed out")
      self._receive(remaining)

    if self.protocol.handshake_exc is not None:
      raise TransportError(
        f"Websocket handshake rejected: {self.protocol.handshake_exc}"
      ) from self.protocol.handshake_exc

  def send_binary(self, data: bytes) -> None:
    self._ensure_open()
    try:
      self.protocol.send_binary(data)
    except InvalidState as e:
      raise TransportError("Connection is not open") from e
    self._flush()

  def send_text(self, text: str) -> None:
    self._ensure_open()
    try:
      self.protocol.send_text(text.encode("utf-8"))
    except InvalidState as e:
      raise TransportError("Connection is not open") from e
    self._flush()

  def send_pong(self, payload: bytes) -> None:
    self._ensure_open()
    if payload in self._pending_pongs:
      # Already queued by the protocol when the ping was parsed
      self._pending_pongs.remove(payload)
    else:
      try:
        self.protocol.send_pong(payload)
      except InvalidState as e:
        raise TransportError("Connection is not open") from e
    self._flush()

  def poll(self, timeout: float) -> bool:
    self._ensure_open()
    deadline = time.monotonic() + timeout
    while not self._frames:
      remaining = deadline - time.monotonic()
      if remaining <= 0:
        return False
      self._receive(remaining)
    return True

  def read_frame(self) -> InboundFrame:
    self._ensure_open()
    if not self.poll(self.timeout):
      raise TransportTimeout("No frame received from backend")

    frame = self._frames.popleft()
    if frame.kind is FrameKind.CLOSE:
      close = Close.parse(frame.payload) if frame.payload else None
      raise TransportError(f"Backend closed the connection: {close}")
    return frame

  def close(self) -> None:
    if self._closed:
      return
    self._closed = True

    try:
      if self.protocol.state is State.OPEN:
        self.protocol.send_close()
        self._flush()
    except (TransportError, InvalidState) as e:
      self.logger.debug("Close frame not sent", error=str(e))
    finally:
      self._sock.close()

  def _ensure_open(self) -> None:
    if self._closed:
      raise TransportError("Transport is closed")

  def _receive(self, timeout: float) -> None:
    """Read whatever the socket has within ``timeout`` and parse it into frames."""
    pending_tls = isinstance(self._sock, ssl.SSLSocket) and self._sock.pending() > 0
    if not pending_tls:
      try:
        readable, _, _ = select.select([self._sock], [], [], max(0.0, timeout))
      except (OSError, ValueError) as e:
        raise TransportError(f"Unable to poll backend socket: {e}") from e
      if not readable:
        return

    try:
      data = self._sock.recv(RECV_BUFFER_SIZE)
    except (ssl.SSLWantReadError, BlockingIOError):
      return
    except OSError as e:
      raise TransportError(f"Backend read failed: {e}") from e

    if not data:
      self.protocol.receive_eof()
      raise TransportError("Backend closed the socket")

    self.protocol.receive_data(data)
    for event in self.protocol.events_received():
      if isinstance(event, Response):
        continue
      self._accept(event)

    if self.protocol.parser_exc is not None:
      self._flush_quietly()
      raise TransportError(
        f"Backend sent an invalid frame: {self.protocol.parser_exc}"
      ) from self.protocol.parser_exc

    if self.protocol.state in (State.CLOSING, State.CLOSED):
      # Echo the close frame the protocol queued in response
      self._flush_quietly()

  def _accept(self, frame: Frame) -> None:
    payload = bytes(frame.data)
    match frame.opcode:
      case Opcode.PING:
        self._pending_pongs.append(payload)
        self._frames.append(InboundFrame(FrameKind.PING, payload))
      case Opcode.PONG:
        self._frames.append(InboundFrame(FrameKind.PONG, payload))
      case Opcode.CLOSE:
        self._frames.append(InboundFrame(FrameKind.CLOSE, payload))
      case Opcode.TEXT | Opcode.BINARY if frame.fin:
        self._frames.append(InboundFrame(_DATA_KINDS[frame.opcode], payload))
      case Opcode.TEXT | Opcode.BINARY:
        self._fragment_kind = _DATA_KINDS[frame.opcode]
        self._fragments = bytearray(payload)
      case Opcode.CONT:
        self._fragments.extend(payload)
        if frame.fin and self._fragment_kind is not None:
          self._frames.append(InboundFrame(self._fragment_kind, bytes(self._fragments)))
          self._fragment_kind = None
          self._fragments = bytearray()

  def _flush(self) -> None:
    for chunk in self.protocol.data_to_send():
      if not chunk:
        # The protocol asks for a half-close
        try:
          self._sock.shutdown(socket.SHUT_WR)
        except OSError as e:
          self.logger.debug("Half-close failed", error=str(e))
        continue
      try:
        self._sock.sendall(chunk)
      except OSError as e:
        raise TransportError(f"Backend write failed: {e}") from e

  def _flush_quietly(self) -> None:
    try:
      self._flush()
    except TransportError as e:
      self.logger.debug("Flush on failing connection dropped", error=str(e))
