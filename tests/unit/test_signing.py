"""
Tests for signing and recovery

Coverage:
- address derivation cross-checked against eth-keys and eth-account
- sign / recover round trip and tamper detection
- deterministic low-s signatures
- approval gated signers: reject, timeout, cancel
- signed actions and the payload the exchange accepts
- scenario A: a transfer of 10 signed by S recovers to S
"""

import pickle
import threading
from concurrent.futures import Future

import pytest
from eth_account import Account
from eth_keys import keys

from hyperliquid_signing import signing
from hyperliquid_signing.actions import Cancel, UsdSend
from hyperliquid_signing.auth import sign_action, sign_in_background
from hyperliquid_signing.context import mainnet, testnet
from hyperliquid_signing.encoder import action_digest
from hyperliquid_signing.errors import (RecoveryError, SignatureMismatch,
                                        SigningError)
from hyperliquid_signing.signing import (ApprovalSigner, LocalSigner,
                                         SignedAction, check_signer, recover,
                                         sign, verify)
from hyperliquid_signing.types import CURVE_ORDER, Signature

KEY = bytes([7]) * 32
DESTINATION = "0x" + "d4" * 20
NONCE = 1700000000000


@pytest.fixture
def signer():
    return LocalSigner(KEY)


@pytest.fixture
def digest():
    return action_digest(Cancel(cancels=[{"a": 0, "o": 1}]), NONCE, mainnet())


# =============================================================================
# KEYS
# =============================================================================


class TestLocalSigner:
    """In memory keys."""

    def test_address_matches_references(self, signer):
        assert signer.address == keys.PrivateKey(KEY).public_key.to_checksum_address()
        assert signer.address == Account.from_key(KEY).address

    def test_hex_key(self, signer):
        assert LocalSigner("0x" + KEY.hex()).address == signer.address
        assert LocalSigner(KEY.hex()).address == signer.address

    @pytest.mark.parametrize(
        "key", [bytes(32), b"\x01" * 31, "0xzz", CURVE_ORDER.to_bytes(32, "big"), 7]
    )
    def test_invalid_key(self, key):
        with pytest.raises(SigningError):
            LocalSigner(key)

    def test_key_stays_private(self, signer):
        assert KEY.hex() not in repr(signer)
        with pytest.raises(TypeError):
            pickle.dumps(signer)

    def test_generate(self):
        first, second = LocalSigner.generate(), LocalSigner.generate()
        assert first.address != second.address


# =============================================================================
# SIGN AND RECOVER
# =============================================================================


class TestRoundTrip:
    """recover(digest, sign(digest, key)) == address(key)."""

    def test_round_trip(self, signer, digest):
        signature = sign(digest, signer)
        assert recover(digest, signature) == signer.address
        assert verify(digest, signature, signer.address.lower())
        assert check_signer(digest, signature, signer.address) == signer.address

    def test_deterministic_low_s(self, signer, digest):
        first, second = sign(digest, signer), sign(digest, signer)
        assert first == second
        assert first.s <= CURVE_ORDER // 2
        assert first.v in (27, 28)

    def test_recovers_reference_signature(self, digest):
        reference = keys.PrivateKey(KEY).sign_msg_hash(digest)
        signature = Signature(reference.r, reference.s, reference.v)
        assert recover(digest, signature) == Account.from_key(KEY).address

    def test_serialized_forms(self, signer, digest):
        signature = sign(digest, signer)
        for form in (bytes(signature), "0x" + bytes(signature).hex(), signature.wire()):
            assert recover(digest, form) == signer.address


class TestTamperDetection:
    """Any change to digest or signature changes the recovered address."""

    def test_digest_changed(self, signer, digest):
        signature = sign(digest, signer)
        tampered = bytes([digest[0] ^ 1]) + digest[1:]
        assert not verify(tampered, signature, signer.address)

    def test_signature_changed(self, signer, digest):
        signature = sign(digest, signer)
        assert not verify(digest, Signature(signature.r, signature.s ^ 1, signature.v), signer.address)
        flipped = 55 - signature.v
        assert not verify(digest, Signature(signature.r, signature.s, flipped), signer.address)

    def test_mismatch(self, signer, digest):
        other = LocalSigner(bytes([8]) * 32)
        with pytest.raises(SignatureMismatch) as error:
            check_signer(digest, sign(digest, other), signer.address)
        assert error.value.recovered == other.address

    def test_malformed(self, digest):
        with pytest.raises(RecoveryError):
            recover(digest, b"\x00" * 10)
        with pytest.raises(RecoveryError):
            recover(digest[:31], Signature(1, 1, 27))

    def test_library_misuse_not_reported_as_tampering(self, signer, digest, monkeypatch):
        signature = sign(digest, signer)

        def outdated(*args, **kwargs):
            raise TypeError("__init__() got an unexpected keyword argument 'flags'")

        monkeypatch.setattr(signing, "secp256k1_PublicKey", outdated)
        with pytest.raises(TypeError):
            recover(digest, signature)

    def test_bad_digest(self, signer):
        with pytest.raises(SigningError):
            sign(b"short", signer)
        with pytest.raises(SigningError):
            sign("00" * 32, signer)

    def test_not_a_signer(self, digest):
        with pytest.raises(SigningError):
            sign(digest, KEY)


# =============================================================================
# APPROVAL
# =============================================================================


class TestApprovalSigner:
    """The wrapped key is only used once the approver says yes."""

    def test_approved(self, signer, digest):
        seen = []

        def approve(digest, description):
            seen.append(description)
            return True

        signature = sign(digest, ApprovalSigner(signer, approve), description="cancel 1")
        assert recover(digest, signature) == signer.address
        assert seen == ["cancel 1"]

    def test_rejected(self, signer, digest):
        with pytest.raises(SigningError):
            sign(digest, ApprovalSigner(signer, lambda d, t: False))

    def test_future_resolved_later(self, signer, digest):
        approval = Future()
        threading.Timer(0.1, approval.set_result, args=(True,)).start()
        wrapped = ApprovalSigner(signer, lambda d, t: approval)
        assert recover(digest, sign(digest, wrapped, timeout=5)) == signer.address

    def test_timeout(self, signer, digest):
        wrapped = ApprovalSigner(signer, lambda d, t: Future(), timeout=0.3)
        with pytest.raises(SigningError, match="timed out"):
            sign(digest, wrapped)

    def test_cancel(self, signer, digest):
        cancel = threading.Event()
        threading.Timer(0.1, cancel.set).start()
        wrapped = ApprovalSigner(signer, lambda d, t: Future())
        with pytest.raises(SigningError, match="cancelled"):
            sign(digest, wrapped, timeout=5, cancel=cancel)

    def test_already_cancelled(self, signer, digest):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(SigningError):
            sign(digest, signer, cancel=cancel)

    def test_approver_failure(self, signer, digest):
        approval = Future()
        approval.set_exception(RuntimeError("device unplugged"))
        with pytest.raises(SigningError, match="device unplugged"):
            sign(digest, ApprovalSigner(signer, lambda d, t: approval))


# =============================================================================
# SIGNED ACTIONS
# =============================================================================


class TestSignedAction:
    """What leaves the process."""

    def test_scenario_transfer_of_ten(self, signer):
        """Scenario A: transfer 10 to X at nonce 1700000000000, signed by S."""
        action = UsdSend(destination=DESTINATION, amount=10)
        signed = sign_action(action, signer, NONCE, testnet())
        assert recover(signed.digest, signed.signature) == signer.address
        assert signed.signer == signer.address

    def test_payload(self, signer):
        context = mainnet(vault_address=DESTINATION, expires_after=NONCE + 1000)
        signed = sign_action(Cancel(cancels=[{"a": 0, "o": 1}]), signer, NONCE, context)
        assert signed.payload() == {
            "action": {"type": "cancel", "cancels": [{"a": 0, "o": 1}]},
            "nonce": NONCE,
            "signature": signed.signature.wire(),
            "vaultAddress": DESTINATION,
            "expiresAfter": NONCE + 1000,
        }

    def test_immutable(self, signer):
        signed = sign_action(Cancel(cancels=[{"a": 0, "o": 1}]), signer, NONCE, mainnet())
        with pytest.raises(AttributeError):
            signed.nonce = NONCE + 1

    def test_background(self, signer):
        action = UsdSend(destination=DESTINATION, amount="1")
        future = sign_in_background(action, signer, NONCE, testnet())
        signed = future.result(timeout=10)
        assert isinstance(signed, SignedAction)
        assert signed.digest == action_digest(action, NONCE, testnet())
        assert signed.signer == signer.address
