"""
nonce.py

WTFPL litepresence.com Dec 2021 & squidKid-deluxe Jan 2024

Strictly increasing nonces seeded by the wall clock.

The exchange only accepts a nonce that is greater than every nonce it has seen
from the same key, so each signing key owns one NonceSource created alongside
its signer.  Issuance is a compare-and-exchange loop: the guard is only ever
tried, never waited on, so a caller stalled inside a signature can not hold up
another key's nonces.
"""

# STANDARD PYTHON MODULES
import threading
import time

# HYPERLIQUID SIGNING MODULES
from .errors import EncodingError
from .utilities import now_ms

MAX_NONCE = 2**64 - 1


class NonceSource:
    """
    issue strictly increasing u64 nonces; ``clock`` returns milliseconds
    """

    def __init__(self, clock=now_ms, last=0):
        self._clock = clock
        self._last = last
        self._guard = threading.Lock()

    @property
    def last(self):
        return self._last

    def next(self):
        while True:
            observed = self._last
            candidate = max(int(self._clock()), observed + 1)
            if candidate > MAX_NONCE:
                raise EncodingError("nonce space exhausted")
            if not self._guard.acquire(blocking=False):
                # another caller is mid exchange; yield and retry
                time.sleep(0)
                continue
            try:
                if self._last != observed:
                    continue
                self._last = candidate
                return candidate
            finally:
                self._guard.release()

    __next__ = next

    def __iter__(self):
        return self
