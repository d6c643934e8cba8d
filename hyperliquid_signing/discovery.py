"""
discovery.py

WTFPL litepresence.com Dec 2021 & squidKid-deluxe Jan 2024

Rendezvous between a multi-sig initiator and its co-signers.

The initiator advertises a ticket, an opaque string it hands out of band;
co-signers connect with it.  Tickets carry where to connect, a random session
token and an expiry.  MemoryDiscovery pairs endpoints inside one process,
TcpDiscovery uses direct sockets.
"""

# STANDARD PYTHON MODULES
import base64
import binascii
import secrets
import socket
import threading
import time
from queue import Empty, Queue

# THIRD PARTY MODULES
import msgpack

# HYPERLIQUID SIGNING MODULES
from .config import HANDSHAKE_TIMEOUT, TICKET_LIFETIME, TICKET_PREFIX
from .errors import NetworkError
from .utilities import it, log

TOKEN_BYTES = 16


class Ticket:
    """
    host, port, session token and expiry (unix seconds)
    """

    def __init__(self, host, port, token, expiry):
        self.host = host
        self.port = port
        self.token = token
        self.expiry = expiry

    def encode(self):
        packed = msgpack.packb(
            {"host": self.host, "port": self.port, "token": self.token, "expiry": self.expiry}
        )
        return TICKET_PREFIX + base64.urlsafe_b64encode(packed).decode("ascii").rstrip("=")

    __str__ = encode

    @classmethod
    def decode(cls, text):
        if isinstance(text, cls):
            return text
        if not isinstance(text, str) or not text.startswith(TICKET_PREFIX):
            raise NetworkError("not a signing session ticket")
        body = text[len(TICKET_PREFIX) :]
        try:
            packed = base64.urlsafe_b64decode(body + "=" * (-len(body) % 4))
            data = msgpack.unpackb(packed)
            ticket = cls(data["host"], data["port"], data["token"], data["expiry"])
        except (binascii.Error, ValueError, TypeError, KeyError) as error:
            raise NetworkError("corrupt signing session ticket") from error
        if not all(
            (
                isinstance(ticket.host, str),
                isinstance(ticket.port, int),
                isinstance(ticket.token, str),
                isinstance(ticket.expiry, (int, float)),
            )
        ):
            raise NetworkError("corrupt signing session ticket")
        return ticket

    def expired(self, now=None):
        return (time.time() if now is None else now) >= self.expiry

    def __eq__(self, other):
        if not isinstance(other, Ticket):
            return NotImplemented
        return self.encode() == other.encode()

    def __repr__(self):
        return f"Ticket({self.host}:{self.port}, expiry={self.expiry})"


class Connection:
    """
    ordered, reliable byte stream to one peer
    """

    def handshake(self):
        """
        authenticate an accepted peer; NetworkError if it can not be trusted
        """

    def write(self, data):
        raise NotImplementedError

    def read(self, size, timeout=None):
        """
        up to ``size`` bytes; b"" once the peer has closed;
        NetworkError if nothing arrives within ``timeout`` seconds
        """
        raise NotImplementedError

    def close(self):
        raise NotImplementedError


class Discovery:
    """
    advertise / accept on the initiator side, connect on the co-signer side
    """

    def advertise(self):
        raise NotImplementedError

    def accept(self, timeout=None):
        """
        the next inbound Connection, or None after ``timeout``; its
        handshake() must succeed before anything is sent to it
        """
        raise NotImplementedError

    def connect(self, ticket):
        raise NotImplementedError

    def close(self):
        raise NotImplementedError


# IN PROCESS
class Pipe:
    """
    one direction of an in memory connection
    """

    def __init__(self):
        self._buffer = bytearray()
        self._cond = threading.Condition()
        self._closed = False

    def put(self, data):
        with self._cond:
            if self._closed:
                raise NetworkError("connection closed")
            self._buffer += data
            self._cond.notify_all()

    def get(self, size, timeout=None):
        with self._cond:
            if not self._cond.wait_for(lambda: self._buffer or self._closed, timeout):
                raise NetworkError("peer idle timeout")
            data = bytes(self._buffer[:size])
            del self._buffer[:size]
            return data

    def close(self):
        with self._cond:
            self._closed = True
            self._cond.notify_all()


class MemoryConnection(Connection):
    def __init__(self, inbound, outbound):
        self._inbound = inbound
        self._outbound = outbound

    def write(self, data):
        self._outbound.put(data)

    def read(self, size, timeout=None):
        return self._inbound.get(size, timeout)

    def close(self):
        self._inbound.close()
        self._outbound.close()


class MemoryDiscovery(Discovery):
    """
    initiator and co-signers in one process, eg tests and local drills;
    share one instance between them
    """

    def __init__(self, lifetime=TICKET_LIFETIME, clock=time.time):
        self.lifetime = lifetime
        self._clock = clock
        self._ticket = None
        self._pending = Queue()
        self._closed = False

    def advertise(self):
        self._closed = False
        self._ticket = Ticket(
            "memory",
            id(self) & 0xFFFF,
            secrets.token_hex(TOKEN_BYTES),
            self._clock() + self.lifetime,
        )
        return self._ticket

    def accept(self, timeout=None):
        try:
            return self._pending.get(timeout=timeout)
        except Empty:
            return None

    def connect(self, ticket):
        ticket = Ticket.decode(ticket)
        if self._closed or self._ticket is None:
            raise NetworkError("no session is advertised")
        if ticket.expired(self._clock()):
            raise NetworkError("ticket expired")
        if not secrets.compare_digest(
            ticket.token.encode("utf-8"), self._ticket.token.encode("utf-8")
        ):
            raise NetworkError("ticket does not match the advertised session")
        upstream, downstream = Pipe(), Pipe()
        self._pending.put(MemoryConnection(upstream, downstream))
        return MemoryConnection(downstream, upstream)

    def close(self):
        self._closed = True
        self._ticket = None
        while True:
            try:
                self._pending.get_nowait().close()
            except Empty:
                break


# DIRECT SOCKETS
class TcpConnection(Connection):
    """
    a socket; accepted sockets carry the ticket their peer must present
    """

    def __init__(self, sock, ticket=None, peer=None):
        self._sock = sock
        self._ticket = ticket
        self.peer = peer

    def handshake(self):
        if self._ticket is None:
            return
        token = read_exactly(self, 2 * TOKEN_BYTES, HANDSHAKE_TIMEOUT)
        if self._ticket.expired() or not secrets.compare_digest(
            token, self._ticket.token.encode("ascii")
        ):
            raise NetworkError(f"bad or expired ticket from {self.peer}")

    def write(self, data):
        try:
            self._sock.sendall(data)
        except OSError as error:
            raise NetworkError(f"send failed: {error}") from error

    def read(self, size, timeout=None):
        try:
            self._sock.settimeout(timeout)
            return self._sock.recv(size)
        except socket.timeout as error:
            raise NetworkError("peer idle timeout") from error
        except OSError as error:
            raise NetworkError(f"receive failed: {error}") from error

    def close(self):
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # already disconnected
        self._sock.close()


def read_exactly(connection, size, timeout=None):
    """
    ``size`` bytes from a connection, NetworkError if it closes early
    """
    buf = b""
    while len(buf) < size:
        chunk = connection.read(size - len(buf), timeout)
        if not chunk:
            raise NetworkError("peer closed the connection")
        buf += chunk
    return buf


class TcpDiscovery(Discovery):
    """
    listen on ``host``:``port`` (0 picks a free port); connecting peers
    authenticate by sending the ticket's session token first

    ``public_host`` is the address written into tickets when co-signers reach
    this machine by another name than the one it binds, eg binding 0.0.0.0
    """

    def __init__(
        self, host="127.0.0.1", port=0, lifetime=TICKET_LIFETIME, public_host=None
    ):
        self.host = host
        self.public_host = public_host or host
        self.port = port
        self.lifetime = lifetime
        self._listener = None
        self._ticket = None

    def advertise(self):
        self.close()
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
            sock.listen()
        except OSError as error:
            sock.close()
            raise NetworkError(f"can not listen on {self.host}:{self.port}") from error
        self._listener = sock
        self._ticket = Ticket(
            self.public_host,
            sock.getsockname()[1],
            secrets.token_hex(TOKEN_BYTES),
            time.time() + self.lifetime,
        )
        log(it("cyan", f"listening for co-signers on {self.host}:{self._ticket.port}"))
        return self._ticket

    def accept(self, timeout=None):
        listener, ticket = self._listener, self._ticket
        if listener is None:
            raise NetworkError("no session is advertised")
        try:
            listener.settimeout(timeout)
            sock, addr = listener.accept()
        except socket.timeout:
            return None
        except OSError as error:
            raise NetworkError(f"accept failed: {error}") from error
        return TcpConnection(sock, ticket, addr)

    def connect(self, ticket):
        ticket = Ticket.decode(ticket)
        if ticket.expired():
            raise NetworkError("ticket expired")
        try:
            sock = socket.create_connection(
                (ticket.host, ticket.port), timeout=HANDSHAKE_TIMEOUT
            )
        except OSError as error:
            raise NetworkError(f"can not reach {ticket.host}:{ticket.port}") from error
        connection = TcpConnection(sock)
        connection.write(ticket.token.encode("ascii"))
        return connection

    def close(self):
        if self._listener is not None:
            self._listener.close()
            self._listener = None
        self._ticket = None
