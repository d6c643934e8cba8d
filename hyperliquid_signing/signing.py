"""
signing.py

WTFPL litepresence.com Dec 2021 & squidKid-deluxe Jan 2024

ECDSA over secp256k1: sign a 32 byte digest with a signer capability and
recover the signing address from a digest and a signature
"""

# STANDARD PYTHON MODULES
import time
from concurrent.futures import CancelledError, Future
from concurrent.futures import TimeoutError as FutureTimeout

# THIRD PARTY MODULES
from eth_utils import keccak, to_checksum_address
from secp256k1 import PrivateKey as secp256k1_PrivateKey  # class
from secp256k1 import PublicKey as secp256k1_PublicKey  # class

# HYPERLIQUID SIGNING MODULES
from .config import ACCEPT_POLL
from .errors import RecoveryError, SignatureMismatch, SigningError
from .types import Signature
from .utilities import it, log


def address_from_public_key(public_key):
    """
    checksummed account address of a 65 byte uncompressed public key
    """
    if len(public_key) != 65 or public_key[0] != 4:
        raise RecoveryError("expected a 65 byte uncompressed public key")
    return to_checksum_address(keccak(public_key[1:])[-20:])


def check_digest(digest, error=SigningError):
    if not isinstance(digest, (bytes, bytearray)) or len(digest) != 32:
        raise error("digest must be 32 bytes")
    return bytes(digest)


class Signer:
    """
    capability that produces signatures for one address without ever
    exposing its key material
    """

    address = None

    def sign_digest(self, digest, timeout=None, cancel=None, description=None):
        raise NotImplementedError("Subclasses must implement sign_digest")

    def __repr__(self):
        return f"{type(self).__name__}({self.address})"


class LocalSigner(Signer):
    """
    in memory private key; deterministic (RFC 6979) low-s signatures
    """

    def __init__(self, private_key):
        if isinstance(private_key, str):
            text = private_key[2:] if private_key.startswith("0x") else private_key
            try:
                private_key = bytes.fromhex(text)
            except ValueError as error:
                raise SigningError("private key is not hex") from error
        if not isinstance(private_key, (bytes, bytearray)) or len(private_key) != 32:
            raise SigningError("private key must be 32 bytes")
        try:
            self._key = secp256k1_PrivateKey(bytes(private_key), raw=True)
        # the library raises a bare Exception for keys outside the curve order
        except Exception as error:
            raise SigningError("invalid private key") from error
        self.address = address_from_public_key(
            self._key.pubkey.serialize(compressed=False)
        )

    @classmethod
    def generate(cls):
        """
        a fresh random key, for drills and tests
        """
        return cls(secp256k1_PrivateKey().private_key)

    def sign_digest(self, digest, timeout=None, cancel=None, description=None):
        digest = check_digest(digest)
        if cancel is not None and cancel.is_set():
            raise SigningError("signing cancelled")
        # libsecp256k1 always emits the low-s form
        raw_sig = self._key.ecdsa_sign_recoverable(digest, raw=True)
        compact, recovery_id = self._key.ecdsa_recoverable_serialize(raw_sig)
        return Signature(
            int.from_bytes(compact[:32], "big"),
            int.from_bytes(compact[32:], "big"),
            27 + recovery_id,
        )

    def __reduce__(self):
        raise TypeError("LocalSigner can not be pickled")


class ApprovalSigner(Signer):
    """
    wrap another signer behind an external approval, eg a hardware button or a
    human at a prompt

    ``request_approval(digest, description)`` returns a bool or a Future that
    resolves to one; the wrapped signer is only used once it says yes
    """

    def __init__(self, signer, request_approval, timeout=None):
        self.signer = signer
        self.address = signer.address
        self.request_approval = request_approval
        self.timeout = timeout

    def _await(self, approval, deadline, cancel):
        while True:
            if cancel is not None and cancel.is_set():
                approval.cancel()
                raise SigningError("signing cancelled")
            wait = ACCEPT_POLL
            if deadline is not None:
                wait = min(wait, deadline - time.monotonic())
                if wait <= 0:
                    approval.cancel()
                    raise SigningError("approval timed out")
            try:
                return approval.result(timeout=wait)
            except FutureTimeout:
                continue
            except CancelledError as error:
                raise SigningError("approval cancelled") from error
            # the approver's own failure is a refusal to sign
            except Exception as error:
                raise SigningError(f"approval failed: {error}") from error

    def sign_digest(self, digest, timeout=None, cancel=None, description=None):
        digest = check_digest(digest)
        timeout = self.timeout if timeout is None else timeout
        deadline = None if timeout is None else time.monotonic() + timeout
        if cancel is not None and cancel.is_set():
            raise SigningError("signing cancelled")
        approval = self.request_approval(digest, description)
        if isinstance(approval, Future):
            approval = self._await(approval, deadline, cancel)
        if approval is not True:
            log(it("yellow", f"{self.address} declined to sign"))
            raise SigningError("approval rejected")
        if deadline is not None and time.monotonic() > deadline:
            raise SigningError("approval timed out")
        return self.signer.sign_digest(digest, cancel=cancel)


def sign(digest, signer, timeout=None, cancel=None, description=None):
    """
    :param bytes digest: 32 byte action digest
    :param Signer signer:
    :param float timeout: seconds, None waits indefinitely
    :param threading.Event cancel: set to abandon the signature
    :return Signature:
    """
    if not isinstance(signer, Signer):
        raise SigningError(f"not a signer: {signer!r}")
    return signer.sign_digest(
        check_digest(digest), timeout=timeout, cancel=cancel, description=description
    )


def recover(digest, signature):
    """
    checksummed address that produced ``signature`` over ``digest``
    """
    digest = check_digest(digest, RecoveryError)
    signature = Signature.parse(signature)
    try:
        pub = secp256k1_PublicKey()
        # recover raw signature
        raw_sig = pub.ecdsa_recoverable_deserialize(
            signature.compact(), signature.recovery_id
        )
        # recover public key
        recovered = secp256k1_PublicKey(pub.ecdsa_recover(digest, raw_sig, raw=True))
        point = recovered.serialize(compressed=False)
    except (TypeError, AttributeError):
        raise
    # the library raises a bare Exception for points off the curve
    except Exception as error:
        raise RecoveryError("signature does not recover to a public key") from error
    return address_from_public_key(point)


def verify(digest, signature, address):
    """
    True if ``signature`` over ``digest`` recovers to ``address``;
    malformed signatures still raise RecoveryError
    """
    return recover(digest, signature).lower() == address.lower()


def check_signer(digest, signature, address):
    """
    raise SignatureMismatch unless ``signature`` recovers to ``address``
    """
    recovered = recover(digest, signature)
    if recovered.lower() != address.lower():
        raise SignatureMismatch(address, recovered)
    return recovered


class SignedAction:
    """
    an action with the nonce, context and signature that authorize it;
    ``digest`` is what the signature was produced over
    """

    __slots__ = ("action", "nonce", "context", "signature", "digest")

    def __init__(self, action, nonce, context, signature, digest):
        object.__setattr__(self, "action", action)
        object.__setattr__(self, "nonce", nonce)
        object.__setattr__(self, "context", context)
        object.__setattr__(self, "signature", Signature.parse(signature))
        object.__setattr__(self, "digest", check_digest(digest))

    def __setattr__(self, name, value):
        raise AttributeError("signed actions are immutable")

    @property
    def signer(self):
        return recover(self.digest, self.signature)

    def payload(self):
        """
        the request body the exchange accepts
        """
        return {
            "action": self.action.wire(self.nonce, self.context),
            "nonce": self.nonce,
            "signature": self.signature.wire(),
            "vaultAddress": self.context.vault_address,
            "expiresAfter": self.context.expires_after,
        }

    def __repr__(self):
        return (
            f"SignedAction({self.action.kind.value}, nonce={self.nonce}, "
            f"signature={self.signature!r})"
        )
