"""
peer.py

WTFPL litepresence.com Dec 2021 & squidKid-deluxe Jan 2024

Interactive multi-sig collection between independent processes.

The Initiator owns a MultiSigSession and advertises a ticket.  Every
Participant that connects receives a proposal, rebuilds the action from its
wire form, recomputes the digest itself, asks its own approval callback and
answers with a signature or a reject.  Each connection is served on its own
thread; a misbehaving or silent peer only loses its own connection.

wire frames: 4 byte big endian length, then a msgpack map with a "type" key

    proposal   initiator -> participant
    signature  participant -> initiator
    reject     participant -> initiator
"""

# STANDARD PYTHON MODULES
import struct
import threading

# THIRD PARTY MODULES
import msgpack

# HYPERLIQUID SIGNING MODULES
from .actions import MultiSig, describe
from .config import ACCEPT_POLL, IDLE_TIMEOUT, MAX_FRAME
from .context import SigningContext
from .discovery import read_exactly
from .encoder import action_digest
from .errors import EncodingError, NetworkError, SigningEngineError, SigningError
from .multisig import SessionState, authorized_set
from .signing import sign
from .types import Uint
from .utilities import it, log, trace

HEADER = struct.Struct(">I")


# FRAMING
def send_message(connection, message):
    packed = msgpack.packb(message)
    if len(packed) > MAX_FRAME:
        raise NetworkError(f"message of {len(packed)} bytes exceeds {MAX_FRAME}")
    connection.write(HEADER.pack(len(packed)) + packed)


def recv_message(connection, timeout=None):
    (size,) = HEADER.unpack(read_exactly(connection, HEADER.size, timeout))
    if size > MAX_FRAME:
        raise NetworkError(f"peer announced a {size} byte message")
    packed = read_exactly(connection, size, timeout)
    try:
        message = msgpack.unpackb(packed)
    except (ValueError, TypeError) as error:
        raise NetworkError("malformed message") from error
    if not isinstance(message, dict) or not isinstance(message.get("type"), str):
        raise NetworkError("message without a type")
    return message


class Proposal:
    """
    what a co-signer is asked to sign: the unsigned envelope bound to a nonce
    and signing context, with the signer set it is collected for
    """

    def __init__(self, envelope, nonce, context, authorized, threshold, description=""):
        self.envelope = envelope
        self.nonce = nonce
        self.context = context
        self.authorized = authorized_set(authorized, threshold)
        self.threshold = threshold
        self.description = description

    @classmethod
    def from_session(cls, session):
        return cls(
            session.envelope,
            session.nonce,
            session.context,
            session.authorized,
            session.threshold,
            session.description(),
        )

    @property
    def digest(self):
        return action_digest(self.envelope, self.nonce, self.context)

    def describe(self):
        """
        rendering computed from the typed action, never the sender's text
        """
        return describe(self.envelope, self.nonce, self.context)

    def message(self):
        return {
            "type": "proposal",
            "envelope": self.envelope.wire(self.nonce, self.context),
            "nonce": self.nonce,
            "context": self.context.wire(),
            "authorized": sorted(self.authorized),
            "threshold": self.threshold,
            "description": self.description,
        }

    @classmethod
    def from_message(cls, message):
        try:
            context = SigningContext.from_wire(message["context"])
            nonce = Uint(message["nonce"], name="nonce").wire()
            envelope = MultiSig.from_wire(message["envelope"])
            authorized = message["authorized"]
            threshold = message["threshold"]
            description = message.get("description", "")
        except (KeyError, TypeError) as error:
            raise EncodingError("malformed proposal") from error
        if envelope.signatures:
            raise EncodingError("a proposal must not carry signatures")
        if not isinstance(authorized, (list, tuple)):
            raise EncodingError("malformed proposal")
        return cls(envelope, nonce, context, authorized, threshold, description)


class Initiator:
    """
    serve a MultiSigSession to co-signers

    with Initiator(session, discovery) as initiator:
        send(initiator.ticket)
        envelope = initiator.run()
    """

    def __init__(self, session, discovery, idle_timeout=IDLE_TIMEOUT):
        self.session = session
        self.discovery = discovery
        self.idle_timeout = idle_timeout
        self.proposal = Proposal.from_session(session).message()
        self.ticket = None
        self.rejected = set()
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._connections = set()
        self._workers = []
        self._acceptor = None

    def start(self):
        """
        advertise and begin accepting co-signers; returns the ticket
        """
        self.ticket = self.discovery.advertise()
        self._acceptor = threading.Thread(target=self._accept_loop, daemon=True)
        self._acceptor.start()
        return self.ticket

    def _accept_loop(self):
        while not self._stop.is_set():
            if self.session.state is not SessionState.COLLECTING:
                break
            try:
                connection = self.discovery.accept(ACCEPT_POLL)
            except NetworkError as error:
                log(it("red", f"accept failed: {error}"))
                break
            if connection is None:
                continue
            if self._stop.is_set():
                connection.close()
                break
            worker = threading.Thread(target=self._serve, args=(connection,), daemon=True)
            with self._lock:
                self._connections.add(connection)
                self._workers.append(worker)
            worker.start()

    def _serve(self, connection):
        try:
            connection.handshake()
            send_message(connection, self.proposal)
            message = recv_message(connection, self.idle_timeout)
            kind = message["type"]
            if kind == "signature":
                accepted = self.session.offer(message["address"], message["signature"])
                log(it("green" if accepted else "yellow", f"{message['address']} signed"))
            elif kind == "reject":
                address = str(message.get("address", "unknown"))
                with self._lock:
                    self.rejected.add(address.lower())
                log(it("yellow", f"{address} rejected the proposal"))
            else:
                log(it("yellow", f"unexpected {kind} message"))
        except SigningEngineError as error:
            log(it("yellow", f"co-signer dropped: {error}"))
        except (KeyError, TypeError) as error:
            log(it("yellow", f"malformed co-signer message: {error!r}"))
        # one failing peer must never take the session down
        except Exception as error:
            trace(error)
        finally:
            with self._lock:
                self._connections.discard(connection)
            connection.close()

    def run(self, timeout=None):
        """
        block until the threshold is met, the session fails or ``timeout``;
        returns the finalized envelope or raises ThresholdNotMet
        """
        if self._acceptor is None:
            self.start()
        try:
            if self.session.wait(timeout) is SessionState.COLLECTING:
                self.session.fail("deadline expired")
            return self.session.result()
        finally:
            self.stop()

    def stop(self):
        self._stop.set()
        self.discovery.close()
        with self._lock:
            connections = list(self._connections)
            workers = list(self._workers)
        for connection in connections:
            connection.close()
        if self._acceptor is not None and self._acceptor is not threading.current_thread():
            self._acceptor.join(ACCEPT_POLL * 5)
        for worker in workers:
            worker.join(ACCEPT_POLL * 5)

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *args):
        self.stop()


class Participant:
    """
    one co-signer

    :param Signer signer:
    :param Discovery discovery:
    :param approve: callable(Proposal) -> bool, shown the locally rebuilt proposal
    :param SigningContext context: network and chain id this signer expects
    :param str multi_sig_user: account this signer expects to sign for
    """

    def __init__(
        self,
        signer,
        discovery,
        approve,
        context=None,
        multi_sig_user=None,
        timeout=IDLE_TIMEOUT,
    ):
        self.signer = signer
        self.discovery = discovery
        self.approve = approve
        self.context = context
        self.multi_sig_user = None if multi_sig_user is None else multi_sig_user.lower()
        self.timeout = timeout

    def _check(self, proposal):
        """
        the reason to refuse a proposal, or None
        """
        if self.context is not None:
            if proposal.context.chain is not self.context.chain:
                return f"proposal is for {proposal.context.chain.value}"
            if proposal.context.signature_chain_id != self.context.signature_chain_id:
                return "unexpected signature chain id"
        if self.multi_sig_user and proposal.envelope.multi_sig_user != self.multi_sig_user:
            return f"proposal is for account {proposal.envelope.multi_sig_user}"
        if self.signer.address.lower() not in proposal.authorized:
            return "this signer is not authorized for the account"
        return None

    def _reject(self, connection, reason):
        log(it("yellow", f"rejecting proposal: {reason}"))
        send_message(
            connection, {"type": "reject", "address": self.signer.address, "reason": reason}
        )

    def join(self, ticket, cancel=None):
        """
        connect, review and answer one proposal

        :return Signature: or None when the proposal was rejected
        """
        connection = self.discovery.connect(ticket)
        try:
            message = recv_message(connection, self.timeout)
            if message["type"] != "proposal":
                raise NetworkError(f"expected a proposal, got {message['type']}")
            try:
                proposal = Proposal.from_message(message)
            except EncodingError as error:
                self._reject(connection, str(error))
                return None
            reason = self._check(proposal)
            if reason is None and self.approve(proposal) is not True:
                reason = "declined"
            if reason is not None:
                self._reject(connection, reason)
                return None
            try:
                signature = sign(
                    proposal.digest,
                    self.signer,
                    timeout=self.timeout,
                    cancel=cancel,
                    description=proposal.describe(),
                )
            except SigningError as error:
                self._reject(connection, str(error))
                return None
            send_message(
                connection,
                {
                    "type": "signature",
                    "address": self.signer.address,
                    "signature": signature.wire(),
                },
            )
            return signature
        finally:
            connection.close()
