"""
encoder.py

WTFPL litepresence.com Dec 2021 & squidKid-deluxe Jan 2024

Canonical encoding of (action, nonce, signing context) into the exact bytes the
exchange expects to be signed, and the keccak digest of those bytes.

Two schemes exist.  L1 actions are msgpack serialized, suffixed with the nonce,
vault and expiry, hashed to a connection id and signed as an EIP-712 ``Agent``
struct.  User signed actions are signed directly as EIP-712
``HyperliquidTransaction:<Name>`` structs.  A multi-sig envelope encodes its
inner action bound to the multi-sig account and the submitting signer.
"""

# THIRD PARTY MODULES
import msgpack
from eth_utils import keccak

# HYPERLIQUID SIGNING MODULES
from .actions import ACTION_CLASSES, Action, ActionKind, Scheme
from .config import (L1_CHAIN_ID, L1_DOMAIN_NAME, L1_DOMAIN_VERSION,
                     USER_DOMAIN_NAME, USER_DOMAIN_VERSION, ZERO_ADDRESS)
from .context import SigningContext
from .errors import EncodingError
from .types import Address, Bytes32, String, Uint, word

DOMAIN_TYPE = (
    "EIP712Domain(string name,string version,uint256 chainId,address verifyingContract)"
)
AGENT_TYPE = "Agent"
AGENT_SIGN_TYPES = (("source", "string"), ("connectionId", "bytes32"))
MULTI_SIG_SIGNERS = (("payloadMultiSigUser", "address"), ("outerSigner", "address"))


# EIP-712
def type_string(primary_type, sign_types):
    """
    eg "Agent(string source,bytes32 connectionId)"
    """
    fields = ",".join(f"{kind} {name}" for name, kind in sign_types)
    return f"{primary_type}({fields})"


def domain_separator(name, version, chain_id):
    return keccak(
        keccak(text=DOMAIN_TYPE)
        + keccak(text=name)
        + keccak(text=version)
        + word(chain_id)
        + bytes(Address(ZERO_ADDRESS))
    )


def struct_hash(primary_type, sign_types, values):
    """
    keccak of the type hash followed by each member as a 32 byte word
    """
    buf = keccak(text=type_string(primary_type, sign_types))
    for name, _ in sign_types:
        buf += bytes(values[name])
    return keccak(buf)


def typed_message(domain, struct):
    """
    the EIP-712 signing input; its keccak is the digest
    """
    return b"\x19\x01" + domain + struct


L1_DOMAIN = domain_separator(L1_DOMAIN_NAME, L1_DOMAIN_VERSION, L1_CHAIN_ID)


# L1 ACTIONS
def connection_id(wire, nonce, context):
    """
    keccak(msgpack(wire) + nonce + vault flag [+ vault] [+ 0x00 + expires_after])
    """
    try:
        buf = msgpack.packb(wire)
    except (TypeError, ValueError, OverflowError) as error:
        raise EncodingError(f"action can not be serialized: {error}") from error
    buf += nonce.to_bytes(8, "big")
    if context.vault_address is None:
        buf += b"\x00"
    else:
        buf += b"\x01" + Address(context.vault_address).raw()
    if context.expires_after is not None:
        buf += b"\x00" + context.expires_after.to_bytes(8, "big")
    return keccak(buf)


def l1_message(wire, nonce, context):
    """
    phantom agent message for an L1 wire object
    """
    agent = {
        "source": String(context.chain.source),
        "connectionId": Bytes32(connection_id(wire, nonce, context)),
    }
    return typed_message(L1_DOMAIN, struct_hash(AGENT_TYPE, AGENT_SIGN_TYPES, agent))


# USER SIGNED ACTIONS
def user_message(primary_type, sign_types, values, context):
    domain = domain_separator(
        USER_DOMAIN_NAME, USER_DOMAIN_VERSION, context.signature_chain_id
    )
    return typed_message(domain, struct_hash(primary_type, sign_types, values))


# ENCODING RULES
def l1_rule(action, nonce, context):
    return l1_message(action.wire(nonce, context), nonce, context)


def user_rule(action, nonce, context):
    return user_message(
        action.primary_type,
        action.sign_types,
        action.typed_values(nonce, context),
        context,
    )


def envelope_rule(envelope, nonce, context):
    """
    the inner action bound to (multiSigUser, outerSigner); collected
    signatures are never part of the message
    """
    inner = envelope.inner
    if inner.scheme is Scheme.L1:
        wire = [envelope.multi_sig_user, envelope.outer_signer, inner.wire(nonce, context)]
        return l1_message(wire, nonce, context)
    sign_types = list(inner.sign_types)
    # the signer addresses follow hyperliquidChain
    sign_types[1:1] = MULTI_SIG_SIGNERS
    values = inner.typed_values(nonce, context)
    values["payloadMultiSigUser"] = Address(envelope.multi_sig_user)
    values["outerSigner"] = Address(envelope.outer_signer)
    return user_message(inner.primary_type, sign_types, values, context)


SCHEME_RULES = {
    Scheme.L1: l1_rule,
    Scheme.USER: user_rule,
    Scheme.ENVELOPE: envelope_rule,
}
RULES = {klass.kind: SCHEME_RULES[klass.scheme] for klass in ACTION_CLASSES}
# every kind must have exactly one rule
if set(RULES) != set(ActionKind):
    raise ImportError(
        f"no encoding rule for {sorted(k.value for k in set(ActionKind) - set(RULES))}"
    )


# PUBLIC API
def encode(action, nonce, context):
    """
    the canonical signing message of an action bound to a nonce and context

    :param Action action: any member of ACTION_CLASSES
    :param int nonce: u64
    :param SigningContext context: network, chain id, vault, expiry
    :return bytes:
    """
    if not isinstance(action, Action):
        raise EncodingError(f"not an action: {action!r}")
    if not isinstance(context, SigningContext):
        raise EncodingError(f"not a signing context: {context!r}")
    Uint(nonce, name="nonce")
    return RULES[action.kind](action, nonce, context)


def digest(message):
    """
    32 byte keccak-256 of an encoded message
    """
    return keccak(message)


def action_digest(action, nonce, context):
    return digest(encode(action, nonce, context))
