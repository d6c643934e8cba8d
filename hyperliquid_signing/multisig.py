"""
multisig.py

WTFPL litepresence.com Dec 2021 & squidKid-deluxe Jan 2024

Threshold collection of signatures for a multi-sig account.

A MultiSigSession fixes the inner action, nonce and signing context up front,
so every co-signer approves the same digest.  Signatures are offered one at a
time from any thread; the offer that brings the count of distinct authorized
signers to the threshold wins a single compare-and-set and assembles the
envelope, later offers are ignored.

    Collecting -> Finalizing -> Finalized
    Collecting -> Failed          (cancel or deadline)
"""

# STANDARD PYTHON MODULES
import threading
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from enum import Enum

# HYPERLIQUID SIGNING MODULES
from .actions import MultiSig, describe
from .config import ACCEPT_POLL, SESSION_TIMEOUT
from .encoder import action_digest, connection_id, digest, user_message
from .errors import (EncodingError, SigningEngineError, SigningError,
                     ThresholdNotMet, UnauthorizedSigner)
from .types import Address, Bytes32, Signature, String, Uint
from .signing import SignedAction, check_signer, recover, sign
from .utilities import it, log

SEND_MULTI_SIG_TYPE = "HyperliquidTransaction:SendMultiSig"
SEND_MULTI_SIG_SIGN_TYPES = (
    ("hyperliquidChain", "string"),
    ("multiSigActionHash", "bytes32"),
    ("nonce", "uint64"),
)


class SessionState(Enum):
    COLLECTING = "collecting"
    FINALIZING = "finalizing"
    FINALIZED = "finalized"
    FAILED = "failed"


def authorized_set(addresses, threshold):
    """
    validate the signer set and threshold; returns lower cased addresses
    """
    if not addresses:
        raise EncodingError("a multi-sig account needs at least one signer")
    users = [Address(a, "authorized user").wire() for a in addresses]
    if len(set(users)) != len(users):
        raise EncodingError("authorized users contain duplicates")
    Uint(threshold, name="threshold")
    if not 1 <= threshold <= len(users):
        raise EncodingError(f"threshold {threshold} outside 1..{len(users)}")
    return frozenset(users)


class MultiSigSession:
    """
    :param str multi_sig_user: the multi-sig account
    :param str outer_signer: the authorized signer who will submit
    :param Action action: the inner action
    :param int nonce: bound once, shared by every co-signer
    :param authorized: addresses allowed to sign
    :param int threshold: distinct signatures required
    :param SigningContext context:
    :param float timeout: seconds until the session fails
    """

    def __init__(
        self,
        multi_sig_user,
        outer_signer,
        action,
        nonce,
        authorized,
        threshold,
        context,
        timeout=SESSION_TIMEOUT,
        clock=time.monotonic,
    ):
        self.authorized = authorized_set(authorized, threshold)
        self.threshold = threshold
        self.envelope = MultiSig(
            multiSigUser=multi_sig_user, outerSigner=outer_signer, action=action
        )
        if self.envelope.outer_signer not in self.authorized:
            raise EncodingError("the outer signer must be an authorized user")
        self.nonce = nonce
        self.context = context
        self.digest = action_digest(self.envelope, nonce, context)
        self._clock = clock
        self.deadline = clock() + timeout
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._state = SessionState.COLLECTING
        self._signatures = {}
        self._result = None
        self._reason = None

    @property
    def inner(self):
        return self.envelope.inner

    @property
    def state(self):
        self._expire_if_due()
        return self._state

    @property
    def signers(self):
        with self._lock:
            return sorted(self._signatures)

    @property
    def missing(self):
        with self._lock:
            return sorted(self.authorized - set(self._signatures))

    def description(self):
        return describe(self.envelope, self.nonce, self.context)

    def fail(self, reason):
        with self._lock:
            if self._state is not SessionState.COLLECTING:
                return False
            self._state = SessionState.FAILED
            self._reason = reason
        log(it("red", f"multi-sig session failed: {reason}"))
        self._done.set()
        return True

    def _expire_if_due(self):
        if self._state is SessionState.COLLECTING and self._clock() >= self.deadline:
            self.fail("deadline expired")

    def offer(self, address, signature):
        """
        add one co-signer's signature

        :return bool: True if accepted, False for duplicates and late offers
        """
        try:
            address = Address(address).wire()
        except EncodingError:
            raise UnauthorizedSigner(address) from None
        if address not in self.authorized:
            log(it("yellow", f"ignoring signature from unauthorized {address}"))
            raise UnauthorizedSigner(address)
        signature = Signature.parse(signature)
        self._expire_if_due()
        if self._state is not SessionState.COLLECTING:
            return False
        check_signer(self.digest, signature, address)
        with self._lock:
            if self._state is not SessionState.COLLECTING:
                return False
            if address in self._signatures:
                return False
            self._signatures[address] = signature
            log(it("green", f"accepted signature {len(self._signatures)} of {self.threshold}"))
            if len(self._signatures) < self.threshold:
                return True
            # compare-and-set; exactly one offer gets here
            self._state = SessionState.FINALIZING
            chosen = [self._signatures[a] for a in sorted(self._signatures)]
        try:
            envelope = self.envelope.with_signatures(
                chosen[: self.threshold], nonce=self.nonce, context=self.context
            )
        except Exception:
            with self._lock:
                self._state = SessionState.FAILED
                self._reason = "finalization failed"
            self._done.set()
            raise
        with self._lock:
            self._result = envelope
            self._state = SessionState.FINALIZED
        log(it("green", "multi-sig threshold met"))
        self._done.set()
        return True

    def cancel(self):
        """
        fail the session unless it has already reached the threshold
        """
        return self.fail("cancelled")

    def wait(self, timeout=None):
        """
        block until the session is terminal, its deadline passes or timeout
        """
        end = None if timeout is None else self._clock() + timeout
        while not self._done.is_set():
            self._expire_if_due()
            remaining = self.deadline - self._clock()
            if end is not None:
                remaining = min(remaining, end - self._clock())
            if remaining <= 0:
                if self._state is SessionState.FINALIZING:
                    # the winning offer is assembling the envelope
                    self._done.wait()
                break
            self._done.wait(min(remaining, ACCEPT_POLL))
        return self.state

    def result(self):
        """
        the finalized envelope, or ThresholdNotMet
        """
        state = self.state
        if state is SessionState.FINALIZING:
            self._done.wait()
            state = self._state
        if state is SessionState.FINALIZED:
            return self._result
        if state is SessionState.FAILED:
            raise ThresholdNotMet(self.missing, self._reason)
        raise ThresholdNotMet(self.missing, "collection in progress")


def collect_locally(session, signers, timeout=None, cancel=None):
    """
    ask every signer in parallel and feed each signature into the session;
    returns the finalized envelope

    signers that refuse, time out or are not authorized are skipped; once the
    threshold is met the remaining signers are told to stop
    """
    stop = threading.Event()
    description = session.description()

    def ask(signer):
        return signer.address, sign(
            session.digest, signer, timeout=timeout, cancel=stop, description=description
        )

    with ThreadPoolExecutor(max_workers=max(1, len(signers))) as executor:
        pending = {executor.submit(ask, signer) for signer in signers}
        while pending:
            if cancel is not None and cancel.is_set():
                session.cancel()
            if session.state is not SessionState.COLLECTING:
                stop.set()
            done, pending = wait(pending, timeout=ACCEPT_POLL, return_when=FIRST_COMPLETED)
            for future in done:
                try:
                    session.offer(*future.result())
                except SigningEngineError as error:
                    log(it("yellow", f"signer skipped: {error}"))
    if session.state is SessionState.COLLECTING:
        session.fail("not enough signers")
    return session.result()


def multi_sig(
    multi_sig_user,
    outer_signer,
    action,
    nonce,
    authorized,
    threshold,
    context,
    signers,
    timeout=SESSION_TIMEOUT,
    cancel=None,
):
    """
    build a session and collect it locally in one call
    """
    session = MultiSigSession(
        multi_sig_user,
        outer_signer,
        action,
        nonce,
        authorized,
        threshold,
        context,
        timeout=timeout,
    )
    return collect_locally(session, signers, timeout=timeout, cancel=cancel)


def lead_digest(envelope, nonce, context):
    """
    digest of the outer signer's submission signature; binds the complete
    envelope, collected signatures included
    """
    if not isinstance(envelope, MultiSig):
        raise EncodingError("only a multiSig envelope carries a lead signature")
    Uint(nonce, name="nonce")
    wire = envelope.wire(nonce, context)
    del wire["type"]
    values = {
        "hyperliquidChain": String(context.chain.value),
        "multiSigActionHash": Bytes32(connection_id(wire, nonce, context)),
        "nonce": Uint(nonce, name="nonce"),
    }
    return digest(
        user_message(SEND_MULTI_SIG_TYPE, SEND_MULTI_SIG_SIGN_TYPES, values, context)
    )


def sign_envelope(
    envelope, lead, nonce=None, context=None, timeout=None, cancel=None, authorized=None
):
    """
    the outer signer's signature over a finalized envelope

    the co-signer signatures are only valid for the nonce and context they
    were collected under; ``nonce`` and ``context`` default to the ones the
    envelope records and must match them when both are known.  Pass
    ``authorized`` to also require every co-signer to be one of those users.

    :return SignedAction: ready for submission
    """
    if not isinstance(envelope, MultiSig):
        raise EncodingError("only a multiSig envelope carries a lead signature")
    if not envelope.signatures:
        raise SigningError("envelope carries no co-signer signatures")
    nonce = envelope.nonce if nonce is None else nonce
    context = envelope.context if context is None else context
    if nonce is None or context is None:
        raise SigningError("the nonce and context the co-signers signed are unknown")
    if envelope.nonce is not None and nonce != envelope.nonce:
        raise SigningError(f"co-signers signed nonce {envelope.nonce}, not {nonce}")
    if envelope.context is not None and context != envelope.context:
        raise SigningError("co-signers signed under another signing context")
    cosigned = action_digest(envelope, nonce, context)
    cosigners = [recover(cosigned, s).lower() for s in envelope.signatures]
    if len(set(cosigners)) != len(cosigners):
        raise SigningError("envelope carries the same co-signer twice")
    if authorized is not None:
        strangers = set(cosigners) - {Address(a).wire() for a in authorized}
        if strangers:
            raise SigningError(f"signatures from unauthorized users {sorted(strangers)}")
    if lead.address.lower() != envelope.outer_signer:
        raise SigningError(
            f"{lead.address} is not the outer signer {envelope.outer_signer}"
        )
    lead_hash = lead_digest(envelope, nonce, context)
    signature = sign(
        lead_hash,
        lead,
        timeout=timeout,
        cancel=cancel,
        description=describe(envelope, nonce, context),
    )
    return SignedAction(envelope, nonce, context, signature, lead_hash)
