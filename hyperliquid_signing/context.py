"""
context.py

WTFPL litepresence.com Dec 2021 & squidKid-deluxe Jan 2024

domain separation parameters supplied with every signing call
"""

# STANDARD PYTHON MODULES
from dataclasses import dataclass
from enum import Enum
from typing import Optional

# HYPERLIQUID SIGNING MODULES
from .config import SIGNATURE_CHAIN_ID
from .errors import EncodingError
from .types import Address, Uint


class Chain(Enum):
    """which deployment of the exchange an action is meant for"""

    MAINNET = "Mainnet"
    TESTNET = "Testnet"

    @property
    def source(self):
        """phantom agent source of L1 actions"""
        return "a" if self is Chain.MAINNET else "b"

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        for chain in cls:
            if str(value).lower() == chain.value.lower():
                return chain
        raise EncodingError(f"unknown chain {value!r}")


@dataclass(frozen=True)
class SigningContext:
    """
    network, chain id used for domain separation, optional vault the signer
    acts on behalf of, and optional expiry (ms) after which the exchange
    refuses the action
    """

    chain: Chain = Chain.MAINNET
    signature_chain_id: int = SIGNATURE_CHAIN_ID
    vault_address: Optional[str] = None
    expires_after: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "chain", Chain.parse(self.chain))
        Uint(self.signature_chain_id, bits=256, name="signature chain id")
        if self.vault_address is not None:
            vault = Address(self.vault_address, name="vault address").wire()
            object.__setattr__(self, "vault_address", vault)
        if self.expires_after is not None:
            Uint(self.expires_after, name="expires after")

    @property
    def signature_chain_hex(self):
        return hex(self.signature_chain_id)

    def wire(self):
        return {
            "chain": self.chain.value,
            "signatureChainId": self.signature_chain_hex,
            "vaultAddress": self.vault_address,
            "expiresAfter": self.expires_after,
        }

    @classmethod
    def from_wire(cls, data):
        if not isinstance(data, dict):
            raise EncodingError(f"signing context must be a mapping, got {data!r}")
        try:
            chain = data["chain"]
            chain_id = int(data["signatureChainId"], 16)
        except (KeyError, TypeError, ValueError) as error:
            raise EncodingError(f"malformed signing context {data!r}") from error
        return cls(
            chain=chain,
            signature_chain_id=chain_id,
            vault_address=data.get("vaultAddress"),
            expires_after=data.get("expiresAfter"),
        )


def mainnet(**kwargs):
    return SigningContext(chain=Chain.MAINNET, **kwargs)


def testnet(**kwargs):
    return SigningContext(chain=Chain.TESTNET, **kwargs)
