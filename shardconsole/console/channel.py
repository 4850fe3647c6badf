"""Line-oriented text I/O over a connected socket."""

from __future__ import annotations

import socket
import threading


class LineChannel:
    MAX_LINE_BYTES = 4096

    def __init__(self, conn: socket.socket) -> None:
        self.conn = conn
        self._send_lock = threading.Lock()
        self._closed = threading.Event()
        self._pushback = b""

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def send_raw(self, text: str) -> bool:
        if self.closed:
            return False
        with self._send_lock:
            try:
                self.conn.sendall(text.encode("utf-8", errors="replace"))
            except OSError:
                return False
        return True

    def send_line(self, text: str = "") -> bool:
        return self.send_raw(f"{text}\r\n")

    def send_lines(self, lines: list[str]) -> bool:
        if not lines:
            return True
        return self.send_raw("".join(f"{line}\r\n" for line in lines))

    def prompt(self, text: str) -> str | None:
        if not self.send_raw(text):
            return None
        return self.recvline()

    def recvline(self) -> str | None:
        """Read one line; None means the peer went away or the channel was closed.

        A line longer than ``MAX_LINE_BYTES`` is discarded up to its terminator
        and comes back as an empty string.
        """
        data = bytearray()
        overflow = False
        try:
            while True:
                chunk = self._read_byte()
                if not chunk:
                    if data or overflow:
                        break
                    return None
                if chunk == b"\n":
                    break
                if chunk == b"\r":
                    follow = self.conn.recv(1)
                    if follow and follow not in (b"\n", b"\x00"):
                        self._pushback = follow
                    break
                if overflow or len(data) >= self.MAX_LINE_BYTES:
                    overflow = True
                    continue
                data.extend(chunk)
        except (TimeoutError, OSError):
            return None
        if overflow:
            return ""
        return data.decode("utf-8", errors="replace")

    def _read_byte(self) -> bytes:
        if self._pushback:
            chunk, self._pushback = self._pushback[:1], self._pushback[1:]
            return chunk
        return self.conn.recv(1)

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        try:
            self.conn.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            self.conn.close()
        except OSError:
            pass
