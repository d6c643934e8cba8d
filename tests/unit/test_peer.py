"""
Tests for rendezvous tickets and the co-signer protocol

Coverage:
- ticket encoding, corruption, expiry and token checks
- length prefixed msgpack framing
- initiator / participant collection over MemoryDiscovery and TcpDiscovery
- participants rebuild the action and recompute the digest themselves
- scenario D: a co-signer rejects and nothing is signed or counted
- silent, unauthorized and tampering peers only lose their own connection
"""

import base64
import socket
import time
from concurrent.futures import ThreadPoolExecutor

import msgpack
import pytest

from hyperliquid_signing.actions import Cancel
from hyperliquid_signing.config import (HANDSHAKE_TIMEOUT, MAX_FRAME,
                                        TICKET_PREFIX)
from hyperliquid_signing.context import mainnet, testnet
from hyperliquid_signing.discovery import (MemoryConnection, MemoryDiscovery,
                                           Pipe, TcpDiscovery, Ticket)
from hyperliquid_signing.errors import (EncodingError, NetworkError,
                                        ThresholdNotMet)
from hyperliquid_signing.multisig import MultiSigSession, SessionState
from hyperliquid_signing.peer import (HEADER, Initiator, Participant,
                                      Proposal, recv_message, send_message)
from hyperliquid_signing.signing import LocalSigner, recover, sign

ACCOUNT = "0x" + "ac" * 20
NONCE = 1700000000000
A, B, C, D = (LocalSigner(bytes([i]) * 32) for i in (1, 2, 3, 4))


class Clock:
    """manually advanced wall clock"""

    def __init__(self):
        self.now = 1700000000.0

    def __call__(self):
        return self.now


def new_session(threshold=2, timeout=30):
    return MultiSigSession(
        ACCOUNT,
        A.address,
        Cancel(cancels=[{"a": 0, "o": 42}]),
        NONCE,
        [A.address, B.address, C.address],
        threshold,
        testnet(),
        timeout=timeout,
    )


def approve_all(proposal):
    return True


def eventually(predicate, timeout=5):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def pair():
    upstream, downstream = Pipe(), Pipe()
    return MemoryConnection(upstream, downstream), MemoryConnection(downstream, upstream)


def collect(session, discovery, signers, approve=approve_all):
    """run an initiator while each signer joins from its own thread"""
    if isinstance(discovery, TcpDiscovery):
        # co-signers dial out with their own transport
        joining = [TcpDiscovery() for _ in signers]
    else:
        joining = [discovery for _ in signers]
    with Initiator(session, discovery) as initiator:
        with ThreadPoolExecutor(max_workers=max(1, len(signers))) as pool:
            futures = [
                pool.submit(Participant(s, d, approve).join, str(initiator.ticket))
                for s, d in zip(signers, joining)
            ]
            envelope = initiator.run(timeout=10)
            answers = [f.result(timeout=10) for f in futures]
    return envelope, answers


# =============================================================================
# TICKETS
# =============================================================================


class TestTicket:
    """Opaque rendezvous strings."""

    def test_round_trip(self):
        ticket = Ticket("127.0.0.1", 9000, "ab" * 16, 1800000000)
        text = ticket.encode()
        assert text.startswith(TICKET_PREFIX)
        assert str(ticket) == text
        assert Ticket.decode(text) == ticket
        assert Ticket.decode(ticket) is ticket

    @pytest.mark.parametrize(
        "text",
        [
            "nope",
            None,
            TICKET_PREFIX + base64.urlsafe_b64encode(msgpack.packb([1, 2])).decode(),
            TICKET_PREFIX
            + base64.urlsafe_b64encode(
                msgpack.packb({"host": 1, "port": "x", "token": "t", "expiry": 1})
            ).decode(),
        ],
    )
    def test_corrupt(self, text):
        with pytest.raises(NetworkError):
            Ticket.decode(text)

    def test_expired(self):
        ticket = Ticket("memory", 1, "ab" * 16, 100)
        assert ticket.expired(now=100)
        assert not ticket.expired(now=99.5)


class TestMemoryDiscovery:
    """Only the advertised, unexpired ticket connects."""

    def test_connect_and_accept(self):
        discovery = MemoryDiscovery()
        ticket = discovery.advertise()
        client = discovery.connect(str(ticket))
        server = discovery.accept(timeout=1)
        client.write(b"ping")
        assert server.read(4, timeout=1) == b"ping"
        assert discovery.accept(timeout=0.01) is None

    def test_expired_ticket(self):
        clock = Clock()
        discovery = MemoryDiscovery(lifetime=30, clock=clock)
        ticket = discovery.advertise()
        clock.now += 31
        with pytest.raises(NetworkError):
            discovery.connect(ticket)

    def test_wrong_token(self):
        discovery = MemoryDiscovery()
        ticket = discovery.advertise()
        with pytest.raises(NetworkError):
            discovery.connect(Ticket(ticket.host, ticket.port, "00" * 16, ticket.expiry))

    def test_not_advertised(self):
        ticket = MemoryDiscovery().advertise()
        with pytest.raises(NetworkError):
            MemoryDiscovery().connect(ticket)

    def test_closed(self):
        discovery = MemoryDiscovery()
        ticket = discovery.advertise()
        discovery.close()
        with pytest.raises(NetworkError):
            discovery.connect(ticket)


# =============================================================================
# FRAMING
# =============================================================================


class TestFraming:
    """4 byte length, then a msgpack map with a type."""

    def test_round_trip(self):
        left, right = pair()
        send_message(left, {"type": "reject", "reason": "declined"})
        assert recv_message(right, timeout=1) == {"type": "reject", "reason": "declined"}

    def test_oversized(self):
        left, right = pair()
        left.write(HEADER.pack(MAX_FRAME + 1))
        with pytest.raises(NetworkError):
            recv_message(right, timeout=1)
        with pytest.raises(NetworkError):
            send_message(left, {"type": "x", "blob": b"\x00" * (MAX_FRAME + 1)})

    @pytest.mark.parametrize("message", [{"reason": "no type"}, [1, 2], {"type": 5}])
    def test_untyped(self, message):
        left, right = pair()
        packed = msgpack.packb(message)
        left.write(HEADER.pack(len(packed)) + packed)
        with pytest.raises(NetworkError):
            recv_message(right, timeout=1)

    def test_closed_and_idle(self):
        left, right = pair()
        with pytest.raises(NetworkError, match="idle"):
            recv_message(right, timeout=0.05)
        left.close()
        with pytest.raises(NetworkError, match="closed"):
            recv_message(right, timeout=1)


class TestProposal:
    """What a co-signer is shown."""

    def test_rebuilt_from_message(self):
        session = new_session()
        proposal = Proposal.from_message(Proposal.from_session(session).message())
        assert proposal.digest == session.digest
        assert proposal.describe() == session.description()
        assert proposal.authorized == session.authorized

    def test_signatures_refused(self):
        session = new_session()
        message = Proposal.from_session(session).message()
        message["envelope"]["signatures"] = [sign(session.digest, A).wire()]
        with pytest.raises(EncodingError):
            Proposal.from_message(message)

    def test_malformed(self):
        message = Proposal.from_session(new_session()).message()
        del message["nonce"]
        with pytest.raises(EncodingError):
            Proposal.from_message(message)


# =============================================================================
# COLLECTION
# =============================================================================


class TestMemoryCollection:
    """Initiator and co-signers sharing one MemoryDiscovery."""

    def test_two_of_three(self):
        session = new_session()
        envelope, answers = collect(session, MemoryDiscovery(), [A, B])
        assert len(envelope.signatures) == 2
        assert {recover(session.digest, s) for s in answers} == {A.address, B.address}
        assert set(envelope.signatures) == set(answers)

    def test_participant_sees_rebuilt_proposal(self):
        """The description shown comes from the typed action, not the sender."""
        session = new_session(threshold=1)
        discovery = MemoryDiscovery()
        ticket = discovery.advertise()
        message = Proposal.from_session(session).message()
        message["description"] = "harmless"
        seen = []

        def approve(proposal):
            seen.append(proposal)
            return True

        with ThreadPoolExecutor(max_workers=1) as pool:
            future = pool.submit(Participant(B, discovery, approve).join, ticket)
            connection = discovery.accept(timeout=5)
            send_message(connection, message)
            reply = recv_message(connection, timeout=5)
            signature = future.result(timeout=5)
        assert reply["type"] == "signature"
        assert recover(session.digest, reply["signature"]) == B.address
        assert recover(session.digest, signature) == B.address
        assert seen[0].digest == session.digest
        assert seen[0].describe() == session.description()
        assert "harmless" not in seen[0].describe()

    def test_scenario_rejecting_peer(self):
        """Scenario D: C reviews and rejects; nothing is signed or counted."""
        session = new_session()
        discovery = MemoryDiscovery()
        with Initiator(session, discovery) as initiator:
            answer = Participant(C, discovery, lambda p: False).join(initiator.ticket)
            assert answer is None
            assert eventually(lambda: C.address.lower() in initiator.rejected)
            assert session.signers == []
            assert session.state is SessionState.COLLECTING

    def test_unauthorized_participant_refuses(self):
        session = new_session()
        discovery = MemoryDiscovery()
        asked = []
        with Initiator(session, discovery) as initiator:
            answer = Participant(D, discovery, asked.append).join(initiator.ticket)
            assert eventually(lambda: D.address.lower() in initiator.rejected)
        assert answer is None
        assert asked == []

    @pytest.mark.parametrize(
        "kwargs",
        [{"context": mainnet()}, {"multi_sig_user": "0x" + "ff" * 20}],
    )
    def test_unexpected_proposal_refused(self, kwargs):
        session = new_session()
        discovery = MemoryDiscovery()
        with Initiator(session, discovery) as initiator:
            answer = Participant(A, discovery, approve_all, **kwargs).join(initiator.ticket)
        assert answer is None
        assert session.signers == []

    def test_tampered_proposal_not_counted(self):
        """A signature over anything but the session digest is dropped."""
        session = new_session(threshold=1)
        discovery = MemoryDiscovery()
        initiator = Initiator(session, discovery)
        initiator.proposal["envelope"]["payload"]["action"]["cancels"][0]["o"] = 43
        initiator.start()
        answer = Participant(A, discovery, approve_all).join(initiator.ticket)
        initiator.stop()
        assert answer is not None
        assert recover(session.digest, answer) != A.address
        assert session.signers == []

    def test_unauthorized_signature_dropped(self):
        session = new_session()
        discovery = MemoryDiscovery()
        initiator = Initiator(session, discovery)
        ticket = initiator.start()
        rogue = discovery.connect(ticket)
        assert recv_message(rogue, timeout=5)["type"] == "proposal"
        send_message(
            rogue,
            {
                "type": "signature",
                "address": D.address,
                "signature": sign(session.digest, D).wire(),
            },
        )
        assert rogue.read(1, timeout=5) == b""
        initiator.stop()
        assert session.signers == []

    def test_silent_peer_times_out(self):
        session = new_session()
        discovery = MemoryDiscovery()
        initiator = Initiator(session, discovery, idle_timeout=0.2)
        ticket = initiator.start()
        silent = discovery.connect(ticket)
        assert recv_message(silent, timeout=5)["type"] == "proposal"
        # the initiator hangs up on the silent peer and keeps collecting
        assert silent.read(1, timeout=5) == b""
        with ThreadPoolExecutor(max_workers=2) as pool:
            futures = [
                pool.submit(Participant(s, discovery, approve_all).join, ticket) for s in (A, B)
            ]
            envelope = initiator.run(timeout=10)
            assert all(f.result(timeout=10) for f in futures)
        assert len(envelope.signatures) == 2

    def test_participant_times_out(self):
        discovery = MemoryDiscovery()
        ticket = discovery.advertise()
        with pytest.raises(NetworkError):
            Participant(A, discovery, approve_all, timeout=0.2).join(ticket)

    def test_run_times_out(self):
        session = new_session()
        with Initiator(session, MemoryDiscovery()) as initiator:
            with pytest.raises(ThresholdNotMet) as error:
                initiator.run(timeout=0.2)
        assert error.value.reason == "deadline expired"
        assert session.state is SessionState.FAILED


class TestTcpCollection:
    """The same protocol over localhost sockets."""

    def test_two_of_three(self):
        session = new_session()
        envelope, answers = collect(session, TcpDiscovery("127.0.0.1"), [B, C])
        assert len(envelope.signatures) == 2
        assert {recover(session.digest, s) for s in answers} == {B.address, C.address}

    def test_ticket_points_at_listener(self):
        discovery = TcpDiscovery("127.0.0.1", public_host="localhost")
        ticket = discovery.advertise()
        try:
            assert ticket.host == "localhost"
            assert ticket.port > 0
        finally:
            discovery.close()

    def test_wrong_token_dropped(self):
        session = new_session()
        with Initiator(session, TcpDiscovery("127.0.0.1")) as initiator:
            ticket = initiator.ticket
            forged = Ticket(ticket.host, ticket.port, "00" * 16, ticket.expiry)
            with pytest.raises(NetworkError):
                Participant(A, TcpDiscovery(), approve_all, timeout=5).join(forged)
        assert session.signers == []

    def test_silent_connection_does_not_stall_others(self):
        session = new_session(threshold=1)
        with Initiator(session, TcpDiscovery("127.0.0.1")) as initiator:
            ticket = initiator.ticket
            silent = socket.create_connection((ticket.host, ticket.port))
            try:
                # let the initiator take the silent socket first
                time.sleep(0.3)
                start = time.monotonic()
                answer = Participant(B, TcpDiscovery(), approve_all, timeout=5).join(ticket)
                envelope = initiator.run(timeout=5)
                elapsed = time.monotonic() - start
            finally:
                silent.close()
        assert recover(session.digest, answer) == B.address
        assert len(envelope.signatures) == 1
        assert elapsed < HANDSHAKE_TIMEOUT / 2

    def test_participant_times_out(self):
        listener = TcpDiscovery("127.0.0.1")
        ticket = listener.advertise()
        try:
            with pytest.raises(NetworkError):
                Participant(A, TcpDiscovery(), approve_all, timeout=0.2).join(ticket)
        finally:
            listener.close()

    def test_unreachable(self):
        listener = TcpDiscovery("127.0.0.1")
        ticket = listener.advertise()
        listener.close()
        with pytest.raises(NetworkError):
            TcpDiscovery().connect(ticket)
