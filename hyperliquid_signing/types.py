"""
types.py

WTFPL litepresence.com Dec 2021 & squidKid-deluxe Jan 2024

Typed wire values.  Every type validates its input on construction, renders one
canonical wire value with ``wire()`` and serializes itself as an EIP-712 32 byte
word with ``bytes()``.
"""

# STANDARD PYTHON MODULES
import re
from decimal import Decimal, InvalidOperation

# THIRD PARTY MODULES
from eth_utils import keccak

# HYPERLIQUID SIGNING MODULES
from .config import MAX_WIRE_DECIMALS
from .errors import EncodingError, RecoveryError

HEX_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")
HEX_CLOID = re.compile(r"^0x[0-9a-fA-F]{32}$")
WIRE_QUANTUM = Decimal(1).scaleb(-MAX_WIRE_DECIMALS)
WIRE_LIMIT = Decimal(10) ** 19


def word(num):
    """
    32 byte big endian representation of an unsigned integer
    """
    return int(num).to_bytes(32, "big")


class Uint:
    """
    unsigned integer of ``bits`` width, 64 by default
    """

    def __init__(self, data, bits=64, name="value"):
        # bool is an int subclass; True must not pass as 1
        if isinstance(data, bool) or not isinstance(data, int):
            raise EncodingError(f"{name} must be an integer, got {data!r}")
        if not 0 <= data < 2**bits:
            raise EncodingError(f"{name} {data} outside uint{bits}")
        self.data = data
        self.bits = bits

    def wire(self):
        return self.data

    def __bytes__(self):
        return word(self.data)


class Bool:
    def __init__(self, data, name="flag"):
        if not isinstance(data, bool):
            raise EncodingError(f"{name} must be a bool, got {data!r}")
        self.data = data

    def wire(self):
        return self.data

    def __bytes__(self):
        return word(int(self.data))


class String:
    """
    utf-8 text; EIP-712 encodes dynamic strings by their keccak digest
    """

    def __init__(self, data, allow_empty=True, name="text"):
        if not isinstance(data, str):
            raise EncodingError(f"{name} must be a string, got {data!r}")
        if not data and not allow_empty:
            raise EncodingError(f"{name} may not be empty")
        self.data = data

    def wire(self):
        return self.data

    def __bytes__(self):
        return keccak(self.data.encode("utf-8"))

    def __str__(self):
        return self.data


class Choice(String):
    """
    a string restricted to a closed set of options
    """

    def __init__(self, data, options, name="choice"):
        super().__init__(data, name=name)
        if data not in options:
            raise EncodingError(f"{name} {data!r} not one of {sorted(options)}")


class Address:
    """
    20 byte account address; always rendered lower case on the wire
    """

    def __init__(self, data, name="address"):
        if not isinstance(data, str) or not HEX_ADDRESS.match(data):
            raise EncodingError(f"{name} is not a 0x prefixed 20 byte address: {data!r}")
        self.data = data.lower()

    def wire(self):
        return self.data

    def __bytes__(self):
        return bytes(12) + bytes.fromhex(self.data[2:])

    def raw(self):
        """
        the 20 address bytes without padding
        """
        return bytes.fromhex(self.data[2:])

    def __str__(self):
        return self.data


class AddressString(Address):
    """
    an address the typed data declares as ``string`` rather than ``address``
    """

    def __bytes__(self):
        return keccak(self.data.encode("utf-8"))


class Bytes32:
    def __init__(self, data, name="hash"):
        if not isinstance(data, (bytes, bytearray)) or len(data) != 32:
            raise EncodingError(f"{name} must be 32 bytes")
        self.data = bytes(data)

    def wire(self):
        return "0x" + self.data.hex()

    def __bytes__(self):
        return self.data


class Cloid:
    """
    128 bit client order id, 0x prefixed hex
    """

    def __init__(self, data, name="cloid"):
        if not isinstance(data, str) or not HEX_CLOID.match(data):
            raise EncodingError(f"{name} is not a 0x prefixed 16 byte hex id: {data!r}")
        self.data = data.lower()

    def wire(self):
        return self.data

    def __bytes__(self):
        return keccak(self.data.encode("utf-8"))


class FloatStr:
    """
    decimal amount rendered as the normalized fixed point string the
    exchange hashes, eg Decimal("87000.00") -> "87000", 0.010 -> "0.01"
    """

    def __init__(self, data, positive=False, non_negative=False, name="amount"):
        if isinstance(data, bool):
            raise EncodingError(f"{name} must be a number, got {data!r}")
        if isinstance(data, float):
            # shortest repr that round trips; never the binary expansion
            data = repr(data)
        if not isinstance(data, (Decimal, int, str)):
            raise EncodingError(f"{name} must be a number, got {data!r}")
        try:
            value = Decimal(data)
        except InvalidOperation as error:
            raise EncodingError(f"{name} is not a number: {data!r}") from error
        if not value.is_finite():
            raise EncodingError(f"{name} must be finite, got {data!r}")
        # keeps every accepted value within the 28 digits normalize() is exact for
        if abs(value) >= WIRE_LIMIT:
            raise EncodingError(f"{name} {data} is out of range")
        if value != value.quantize(WIRE_QUANTUM):
            raise EncodingError(
                f"{name} {data} has more than {MAX_WIRE_DECIMALS} decimal places"
            )
        if positive and value <= 0:
            raise EncodingError(f"{name} must be positive, got {data}")
        if non_negative and value < 0:
            raise EncodingError(f"{name} may not be negative, got {data}")
        value = value.normalize()
        text = format(value, "f")
        if text == "-0":
            text = "0"
        self.value = value
        self.data = text

    def wire(self):
        return self.data

    def __bytes__(self):
        return keccak(self.data.encode("utf-8"))

    def __str__(self):
        return self.data


class Array:
    """
    ordered list of typed values
    """

    def __init__(self, data, allow_empty=False, name="list"):
        if not isinstance(data, (list, tuple)):
            raise EncodingError(f"{name} must be a list, got {data!r}")
        if not data and not allow_empty:
            raise EncodingError(f"{name} may not be empty")
        self.data = tuple(data)

    def wire(self):
        return [a.wire() for a in self.data]

    def __len__(self):
        return len(self.data)


class Optional:
    """
    a value that is left off the wire entirely when absent
    """

    def __init__(self, data):
        self.data = data

    def isempty(self):
        return self.data is None

    def wire(self):
        return None if self.data is None else self.data.wire()


# secp256k1 group order
CURVE_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


class Signature:
    """
    recoverable ECDSA signature (r, s, v) with v in {27, 28}

    accepts a {"r", "s", "v"} mapping, 65 raw bytes r || s || v, or the same
    as a 0x prefixed hex string; v may be given as a bare recovery id 0 or 1
    """

    __slots__ = ("r", "s", "v")

    def __init__(self, r, s, v):
        for name, value in (("r", r), ("s", s), ("v", v)):
            if isinstance(value, bool) or not isinstance(value, int):
                raise RecoveryError(f"signature {name} must be an integer")
        if v in (0, 1):
            v += 27
        if v not in (27, 28):
            raise RecoveryError(f"invalid recovery id v={v}")
        if not 0 < r < CURVE_ORDER or not 0 < s < CURVE_ORDER:
            raise RecoveryError("signature r or s out of range")
        object.__setattr__(self, "r", r)
        object.__setattr__(self, "s", s)
        object.__setattr__(self, "v", v)

    def __setattr__(self, name, value):
        raise AttributeError("signatures are immutable")

    @classmethod
    def parse(cls, data):
        if isinstance(data, cls):
            return data
        if isinstance(data, str):
            text = data[2:] if data.startswith("0x") else data
            try:
                data = bytes.fromhex(text)
            except ValueError as error:
                raise RecoveryError("signature is not hex") from error
        if isinstance(data, (bytes, bytearray)):
            if len(data) != 65:
                raise RecoveryError(f"signature must be 65 bytes, got {len(data)}")
            return cls(
                int.from_bytes(data[:32], "big"),
                int.from_bytes(data[32:64], "big"),
                data[64],
            )
        if isinstance(data, dict):
            try:
                r, s, v = data["r"], data["s"], data["v"]
                if isinstance(r, str):
                    r = int(r, 16)
                if isinstance(s, str):
                    s = int(s, 16)
            except (KeyError, TypeError, ValueError) as error:
                raise RecoveryError(f"malformed signature {data!r}") from error
            return cls(r, s, v)
        raise RecoveryError(f"unsupported signature {type(data).__name__}")

    @property
    def recovery_id(self):
        return self.v - 27

    def compact(self):
        """
        64 byte r || s
        """
        return self.r.to_bytes(32, "big") + self.s.to_bytes(32, "big")

    def __bytes__(self):
        return self.compact() + bytes([self.v])

    def wire(self):
        return {"r": hex(self.r), "s": hex(self.s), "v": self.v}

    def __eq__(self, other):
        if not isinstance(other, Signature):
            return NotImplemented
        return (self.r, self.s, self.v) == (other.r, other.s, other.v)

    def __hash__(self):
        return hash((self.r, self.s, self.v))

    def __repr__(self):
        return f"Signature(0x{bytes(self).hex()})"
