"""
errors.py

WTFPL litepresence.com Dec 2021 & squidKid-deluxe Jan 2024

exception taxonomy for encoding, signing, multi-sig collection and submission
"""


class SigningEngineError(Exception):
    """base class of every error raised by hyperliquid_signing"""


class EncodingError(SigningEngineError, ValueError):
    """an action field is outside its declared domain; never retried"""


class SigningError(SigningEngineError):
    """the signer capability is unavailable, rejected, timed out or was cancelled"""


class RecoveryError(SigningEngineError, ValueError):
    """malformed signature; indicates corruption or tampering"""


class SignatureMismatch(RecoveryError):
    """a well formed signature recovers to a different address than claimed"""

    def __init__(self, claimed, recovered):
        super().__init__(f"signature claims {claimed} but recovers to {recovered}")
        self.claimed = claimed
        self.recovered = recovered


class ThresholdNotMet(SigningEngineError):
    """a multi-sig session expired or was cancelled before enough signatures"""

    def __init__(self, missing, reason="deadline expired"):
        self.missing = sorted(missing)
        self.reason = reason
        super().__init__(f"threshold not met ({reason}); missing {self.missing}")


class UnauthorizedSigner(SigningEngineError):
    """a signature from an address outside the authorized set"""

    def __init__(self, address):
        super().__init__(f"{address} is not an authorized signer")
        self.address = address


class NetworkError(SigningEngineError):
    """connection failure, invalid or expired ticket, idle peer"""


class SubmissionError(SigningEngineError):
    """the exchange rejected a signed action"""

    def __init__(self, reason, message):
        super().__init__(f"{reason}: {message}")
        self.reason = reason
        self.message = message

    @property
    def retryable(self):
        """only nonce rejections may be retried, and only with a fresh nonce"""
        return self.reason == "stale_nonce"
