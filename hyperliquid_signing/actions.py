"""
actions.py

WTFPL litepresence.com Dec 2021 & squidKid-deluxe Jan 2024

The closed set of exchange actions.  Each action is built from its wire field
names, validated field by field into typed values, and frozen.  ``wire()``
renders the dictionary the exchange receives, in the key order it hashes.
"""

# STANDARD PYTHON MODULES
import json
from enum import Enum
from types import MappingProxyType

# HYPERLIQUID SIGNING MODULES
from .config import TWAP_MAX_MINUTES, TWAP_MIN_MINUTES
from .errors import EncodingError
from .types import (Address, AddressString, Array, Bool, Choice, Cloid,
                    FloatStr, Optional, Signature, String, Uint)

TIME_IN_FORCE = ("Alo", "Ioc", "Gtc")
GROUPINGS = ("na", "normalTpsl", "positionTpsl")
TPSL = ("tp", "sl")


class ActionKind(Enum):
    ORDER = "order"
    CANCEL = "cancel"
    CANCEL_BY_CLOID = "cancelByCloid"
    BATCH_MODIFY = "batchModify"
    TWAP_ORDER = "twapOrder"
    TWAP_CANCEL = "twapCancel"
    USD_SEND = "usdSend"
    SPOT_SEND = "spotSend"
    SEND_ASSET = "sendAsset"
    USD_CLASS_TRANSFER = "usdClassTransfer"
    APPROVE_AGENT = "approveAgent"
    CONVERT_TO_MULTI_SIG_USER = "convertToMultiSigUser"
    MULTI_SIG = "multiSig"


class Scheme(Enum):
    """how an action kind is turned into a signing message"""

    L1 = "l1"
    USER = "user"
    ENVELOPE = "envelope"


def is_args_this_class(self, args):
    """
    True if there is only one argument
    and its type name is the same as the type name of self
    """
    return len(args) == 1 and type(args[0]).__name__ == type(self).__name__


def take(kwargs, key, owner):
    """
    pop a required wire field
    """
    try:
        return kwargs.pop(key)
    except KeyError:
        raise EncodingError(f"{owner} is missing field {key!r}") from None


# SERIALIZATION OBJECTS
class WireObject:
    """
    ordered mapping of typed values; subclasses declare the fields in
    _prepare_data in the order the exchange serializes them
    """

    def __init__(self, *args, **kwargs):
        if is_args_this_class(self, args):
            data = args[0].data
        else:
            if len(args) == 1 and len(kwargs) == 0:
                kwargs = args[0]
            if not isinstance(kwargs, dict):
                raise EncodingError(
                    f"{type(self).__name__} expects a mapping, got {kwargs!r}"
                )
            kwargs = dict(kwargs)
            data = self._prepare_data(kwargs)
            if kwargs:
                raise EncodingError(
                    f"{type(self).__name__} got unexpected fields {sorted(kwargs)}"
                )
        object.__setattr__(self, "data", MappingProxyType(dict(data)))

    def __setattr__(self, name, value):
        raise AttributeError(f"{type(self).__name__} is immutable")

    def __delattr__(self, name):
        raise AttributeError(f"{type(self).__name__} is immutable")

    def _prepare_data(self, kwargs):
        """To be implemented by subclasses. Consume kwargs and return the data dict."""
        raise NotImplementedError("Subclasses must implement _prepare_data")

    def wire(self):
        ret = {}
        for key, value in self.data.items():
            # absent optionals are left off the wire, not sent as nil
            if isinstance(value, Optional) and value.isempty():
                continue
            ret[key] = value.wire()
        return ret

    def __eq__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return WireObject.wire(self) == WireObject.wire(other)

    def __repr__(self):
        return f"{type(self).__name__}({WireObject.wire(self)!r})"


class LimitOrderType(WireObject):
    def _prepare_data(self, kwargs):
        return {"tif": Choice(take(kwargs, "tif", "limit"), TIME_IN_FORCE, "tif")}


class TriggerOrderType(WireObject):
    def _prepare_data(self, kwargs):
        return {
            "isMarket": Bool(take(kwargs, "isMarket", "trigger"), "isMarket"),
            "triggerPx": FloatStr(
                take(kwargs, "triggerPx", "trigger"), positive=True, name="triggerPx"
            ),
            "tpsl": Choice(take(kwargs, "tpsl", "trigger"), TPSL, "tpsl"),
        }


class OrderType(WireObject):
    """
    exactly one of {"limit": {...}} or {"trigger": {...}}
    """

    def _prepare_data(self, kwargs):
        if len(kwargs) != 1:
            raise EncodingError(f"order type must be limit or trigger, got {kwargs!r}")
        if "limit" in kwargs:
            return {"limit": LimitOrderType(kwargs.pop("limit"))}
        if "trigger" in kwargs:
            return {"trigger": TriggerOrderType(kwargs.pop("trigger"))}
        raise EncodingError(f"unknown order type {sorted(kwargs)}")


class OrderWire(WireObject):
    """
    a = asset index, b = is buy, p = limit price, s = size,
    r = reduce only, t = order type, c = client order id
    """

    def _prepare_data(self, kwargs):
        cloid = kwargs.pop("c", None)
        return {
            "a": Uint(take(kwargs, "a", "order"), name="asset"),
            "b": Bool(take(kwargs, "b", "order"), "is_buy"),
            "p": FloatStr(take(kwargs, "p", "order"), positive=True, name="price"),
            "s": FloatStr(take(kwargs, "s", "order"), positive=True, name="size"),
            "r": Bool(take(kwargs, "r", "order"), "reduce_only"),
            "t": OrderType(take(kwargs, "t", "order")),
            "c": Optional(None if cloid is None else Cloid(cloid)),
        }


class Builder(WireObject):
    """
    b = builder address, f = fee in tenths of a basis point
    """

    def _prepare_data(self, kwargs):
        return {
            "b": Address(take(kwargs, "b", "builder"), "builder"),
            "f": Uint(take(kwargs, "f", "builder"), name="builder fee"),
        }


class CancelWire(WireObject):
    def _prepare_data(self, kwargs):
        return {
            "a": Uint(take(kwargs, "a", "cancel"), name="asset"),
            "o": Uint(take(kwargs, "o", "cancel"), name="oid"),
        }


class CancelByCloidWire(WireObject):
    def _prepare_data(self, kwargs):
        return {
            "asset": Uint(take(kwargs, "asset", "cancel"), name="asset"),
            "cloid": Cloid(take(kwargs, "cloid", "cancel")),
        }


class ModifyWire(WireObject):
    def _prepare_data(self, kwargs):
        oid = take(kwargs, "oid", "modify")
        return {
            "oid": Cloid(oid) if isinstance(oid, str) else Uint(oid, name="oid"),
            "order": OrderWire(take(kwargs, "order", "modify")),
        }


class TwapWire(WireObject):
    """
    a = asset index, b = is buy, s = total size, r = reduce only,
    m = minutes to run, t = randomize slice timing
    """

    def _prepare_data(self, kwargs):
        minutes = Uint(take(kwargs, "m", "twap"), bits=32, name="minutes")
        if not TWAP_MIN_MINUTES <= minutes.data <= TWAP_MAX_MINUTES:
            raise EncodingError(
                f"twap minutes {minutes.data} outside {TWAP_MIN_MINUTES}..{TWAP_MAX_MINUTES}"
            )
        return {
            "a": Uint(take(kwargs, "a", "twap"), name="asset"),
            "b": Bool(take(kwargs, "b", "twap"), "is_buy"),
            "s": FloatStr(take(kwargs, "s", "twap"), positive=True, name="size"),
            "r": Bool(take(kwargs, "r", "twap"), "reduce_only"),
            "m": minutes,
            "t": Bool(take(kwargs, "t", "twap"), "randomize"),
        }


# ACTIONS
class Action(WireObject):
    """
    base of every exchange action; ``kind`` tags the variant
    """

    kind = None
    scheme = None

    def wire(self, nonce=None, context=None):
        return {"type": self.kind.value, **super().wire()}

    @classmethod
    def from_wire(cls, wire):
        """
        rebuild an action from the dictionary the exchange would receive
        """
        kwargs = dict(wire)
        kind = kwargs.pop("type", None)
        if kind != cls.kind.value:
            raise EncodingError(f"{cls.__name__} can not be built from type {kind!r}")
        return cls(kwargs)


class L1Action(Action):
    """
    actions hashed with msgpack and signed through a phantom agent
    """

    scheme = Scheme.L1


class UserAction(Action):
    """
    actions signed as EIP-712 typed data by the user themselves

    the network name, signature chain id and nonce come from the signing call
    and are written into the wire form; ``sign_types`` lists the typed data
    fields in declaration order
    """

    scheme = Scheme.USER
    primary_type = None
    sign_types = ()
    nonce_field = "nonce"

    def wire(self, nonce=None, context=None):
        if nonce is None or context is None:
            raise EncodingError(
                f"{self.kind.value} binds its nonce and signing context into the wire form"
            )
        ret = {
            "type": self.kind.value,
            "signatureChainId": context.signature_chain_hex,
            "hyperliquidChain": context.chain.value,
        }
        ret.update(WireObject.wire(self))
        ret[self.nonce_field] = Uint(nonce, name="nonce").wire()
        return ret

    def typed_values(self, nonce, context):
        """
        mapping of typed data field name to typed value
        """
        ret = {"hyperliquidChain": String(context.chain.value)}
        ret.update(self.data)
        ret[self.nonce_field] = Uint(nonce, name="nonce")
        return ret

    @classmethod
    def from_wire(cls, wire):
        kwargs = dict(wire)
        for key in ("signatureChainId", "hyperliquidChain", cls.nonce_field):
            kwargs.pop(key, None)
        return super().from_wire(kwargs)


class Order(L1Action):
    kind = ActionKind.ORDER

    def _prepare_data(self, kwargs):
        orders = take(kwargs, "orders", "order")
        if not isinstance(orders, (list, tuple)):
            raise EncodingError("orders must be a list")
        builder = kwargs.pop("builder", None)
        return {
            "orders": Array([OrderWire(o) for o in orders], name="orders"),
            "grouping": Choice(kwargs.pop("grouping", "na"), GROUPINGS, "grouping"),
            "builder": Optional(None if builder is None else Builder(builder)),
        }


class Cancel(L1Action):
    kind = ActionKind.CANCEL

    def _prepare_data(self, kwargs):
        cancels = take(kwargs, "cancels", "cancel")
        if not isinstance(cancels, (list, tuple)):
            raise EncodingError("cancels must be a list")
        return {"cancels": Array([CancelWire(c) for c in cancels], name="cancels")}


class CancelByCloid(L1Action):
    kind = ActionKind.CANCEL_BY_CLOID

    def _prepare_data(self, kwargs):
        cancels = take(kwargs, "cancels", "cancelByCloid")
        if not isinstance(cancels, (list, tuple)):
            raise EncodingError("cancels must be a list")
        return {
            "cancels": Array([CancelByCloidWire(c) for c in cancels], name="cancels")
        }


class BatchModify(L1Action):
    kind = ActionKind.BATCH_MODIFY

    def _prepare_data(self, kwargs):
        modifies = take(kwargs, "modifies", "batchModify")
        if not isinstance(modifies, (list, tuple)):
            raise EncodingError("modifies must be a list")
        return {
            "modifies": Array([ModifyWire(m) for m in modifies], name="modifies")
        }


class TwapOrder(L1Action):
    kind = ActionKind.TWAP_ORDER

    def _prepare_data(self, kwargs):
        return {"twap": TwapWire(take(kwargs, "twap", "twapOrder"))}


class TwapCancel(L1Action):
    """
    a = asset index, t = the twap id the exchange returned
    """

    kind = ActionKind.TWAP_CANCEL

    def _prepare_data(self, kwargs):
        return {
            "a": Uint(take(kwargs, "a", "twapCancel"), name="asset"),
            "t": Uint(take(kwargs, "t", "twapCancel"), name="twap id"),
        }


class UsdSend(UserAction):
    kind = ActionKind.USD_SEND
    primary_type = "HyperliquidTransaction:UsdSend"
    sign_types = (
        ("hyperliquidChain", "string"),
        ("destination", "string"),
        ("amount", "string"),
        ("time", "uint64"),
    )
    nonce_field = "time"

    def _prepare_data(self, kwargs):
        return {
            "destination": AddressString(take(kwargs, "destination", "usdSend"), "destination"),
            "amount": FloatStr(take(kwargs, "amount", "usdSend"), positive=True),
        }


class SpotSend(UserAction):
    kind = ActionKind.SPOT_SEND
    primary_type = "HyperliquidTransaction:SpotSend"
    sign_types = (
        ("hyperliquidChain", "string"),
        ("destination", "string"),
        ("token", "string"),
        ("amount", "string"),
        ("time", "uint64"),
    )
    nonce_field = "time"

    def _prepare_data(self, kwargs):
        return {
            "destination": AddressString(take(kwargs, "destination", "spotSend"), "destination"),
            "token": String(take(kwargs, "token", "spotSend"), allow_empty=False, name="token"),
            "amount": FloatStr(take(kwargs, "amount", "spotSend"), positive=True),
        }


class SendAsset(UserAction):
    """
    move a token between users, dexes ("" is the perp dex, "spot" the spot
    balance) and subaccounts
    """

    kind = ActionKind.SEND_ASSET
    primary_type = "HyperliquidTransaction:SendAsset"
    sign_types = (
        ("hyperliquidChain", "string"),
        ("destination", "string"),
        ("sourceDex", "string"),
        ("destinationDex", "string"),
        ("token", "string"),
        ("amount", "string"),
        ("fromSubAccount", "string"),
        ("nonce", "uint64"),
    )

    def _prepare_data(self, kwargs):
        sub_account = kwargs.pop("fromSubAccount", "")
        if sub_account:
            sub_account = Address(sub_account, "fromSubAccount").wire()
        return {
            "destination": AddressString(take(kwargs, "destination", "sendAsset"), "destination"),
            "sourceDex": String(kwargs.pop("sourceDex", ""), name="sourceDex"),
            "destinationDex": String(kwargs.pop("destinationDex", ""), name="destinationDex"),
            "token": String(take(kwargs, "token", "sendAsset"), allow_empty=False, name="token"),
            "amount": FloatStr(take(kwargs, "amount", "sendAsset"), positive=True),
            "fromSubAccount": String(sub_account, name="fromSubAccount"),
        }


class UsdClassTransfer(UserAction):
    kind = ActionKind.USD_CLASS_TRANSFER
    primary_type = "HyperliquidTransaction:UsdClassTransfer"
    sign_types = (
        ("hyperliquidChain", "string"),
        ("amount", "string"),
        ("toPerp", "bool"),
        ("nonce", "uint64"),
    )

    def _prepare_data(self, kwargs):
        return {
            "amount": FloatStr(take(kwargs, "amount", "usdClassTransfer"), positive=True),
            "toPerp": Bool(take(kwargs, "toPerp", "usdClassTransfer"), "toPerp"),
        }


class ApproveAgent(UserAction):
    kind = ActionKind.APPROVE_AGENT
    primary_type = "HyperliquidTransaction:ApproveAgent"
    sign_types = (
        ("hyperliquidChain", "string"),
        ("agentAddress", "address"),
        ("agentName", "string"),
        ("nonce", "uint64"),
    )

    def _prepare_data(self, kwargs):
        name = kwargs.pop("agentName", None)
        return {
            "agentAddress": Address(take(kwargs, "agentAddress", "approveAgent"), "agentAddress"),
            "agentName": String("" if name is None else name, name="agentName"),
        }


class ConvertToMultiSigUser(UserAction):
    """
    turn the signing account into a multi-sig account; ``signers`` is the
    JSON text {"authorizedUsers": [...], "threshold": n} with the users
    lower cased and sorted
    """

    kind = ActionKind.CONVERT_TO_MULTI_SIG_USER
    primary_type = "HyperliquidTransaction:ConvertToMultiSigUser"
    sign_types = (
        ("hyperliquidChain", "string"),
        ("signers", "string"),
        ("nonce", "uint64"),
    )

    def _prepare_data(self, kwargs):
        signers = take(kwargs, "signers", "convertToMultiSigUser")
        if isinstance(signers, str):
            try:
                signers = json.loads(signers)
            except ValueError as error:
                raise EncodingError("signers is not valid JSON") from error
        if not isinstance(signers, dict) or set(signers) != {"authorizedUsers", "threshold"}:
            raise EncodingError("signers must hold exactly authorizedUsers and threshold")
        users = signers["authorizedUsers"]
        if not isinstance(users, (list, tuple)) or not users:
            raise EncodingError("authorizedUsers must be a non empty list")
        users = sorted({Address(u, "authorized user").wire() for u in users})
        if len(users) != len(signers["authorizedUsers"]):
            raise EncodingError("authorizedUsers contains duplicates")
        threshold = Uint(signers["threshold"], name="threshold").wire()
        if not 1 <= threshold <= len(users):
            raise EncodingError(f"threshold {threshold} outside 1..{len(users)}")
        text = json.dumps({"authorizedUsers": users, "threshold": threshold})
        return {"signers": String(text, name="signers")}

    @property
    def authorized_users(self):
        return json.loads(self.data["signers"].data)["authorizedUsers"]

    @property
    def threshold(self):
        return json.loads(self.data["signers"].data)["threshold"]


class MultiSig(Action):
    """
    Envelope around an inner action submitted on behalf of a multi-sig
    account.  Only the inner action, bound to (multiSigUser, outerSigner), is
    hashed; ``signatures`` are produced over that hash and are carried beside
    it, never inside it.

    ``nonce`` and ``context`` record what the carried signatures were made
    for, when known; they are not part of the wire form.
    """

    kind = ActionKind.MULTI_SIG
    scheme = Scheme.ENVELOPE

    def __init__(self, *args, signatures=None, nonce=None, context=None, **kwargs):
        super().__init__(*args, **kwargs)
        if is_args_this_class(self, args):
            source = args[0]
            signatures = source.signatures if signatures is None else signatures
            nonce = source.nonce if nonce is None else nonce
            context = source.context if context is None else context
        signatures = tuple(Signature.parse(s) for s in signatures or ())
        object.__setattr__(self, "signatures", signatures)
        object.__setattr__(self, "nonce", nonce)
        object.__setattr__(self, "context", context)

    def _prepare_data(self, kwargs):
        inner = take(kwargs, "action", "multiSig")
        if isinstance(inner, dict):
            inner = from_wire(inner)
        if not isinstance(inner, Action):
            raise EncodingError(f"multiSig must wrap an action, got {inner!r}")
        if inner.scheme is Scheme.ENVELOPE:
            raise EncodingError("a multiSig envelope can not wrap another envelope")
        return {
            "multiSigUser": Address(take(kwargs, "multiSigUser", "multiSig"), "multiSigUser"),
            "outerSigner": Address(take(kwargs, "outerSigner", "multiSig"), "outerSigner"),
            "action": inner,
        }

    @property
    def inner(self):
        return self.data["action"]

    @property
    def multi_sig_user(self):
        return self.data["multiSigUser"].wire()

    @property
    def outer_signer(self):
        return self.data["outerSigner"].wire()

    def with_signatures(self, signatures, nonce=None, context=None):
        return MultiSig(self, signatures=signatures, nonce=nonce, context=context)

    def payload(self, nonce=None, context=None):
        return {
            "multiSigUser": self.multi_sig_user,
            "outerSigner": self.outer_signer,
            "action": self.inner.wire(nonce, context),
        }

    def wire(self, nonce=None, context=None):
        if context is None:
            raise EncodingError("multiSig binds its signature chain id into the wire form")
        return {
            "type": self.kind.value,
            "signatureChainId": context.signature_chain_hex,
            "signatures": [s.wire() for s in self.signatures],
            "payload": self.payload(nonce, context),
        }

    def __eq__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return (
            self.multi_sig_user == other.multi_sig_user
            and self.outer_signer == other.outer_signer
            and self.inner == other.inner
            and self.signatures == other.signatures
        )

    def __repr__(self):
        return (
            f"MultiSig(multiSigUser={self.multi_sig_user}, outerSigner={self.outer_signer}, "
            f"action={self.inner!r}, signatures={len(self.signatures)})"
        )

    @classmethod
    def from_wire(cls, wire):
        kwargs = dict(wire)
        if kwargs.pop("type", None) != cls.kind.value:
            raise EncodingError("not a multiSig envelope")
        kwargs.pop("signatureChainId", None)
        signatures = kwargs.pop("signatures", [])
        payload = take(kwargs, "payload", "multiSig")
        if kwargs:
            raise EncodingError(f"MultiSig got unexpected fields {sorted(kwargs)}")
        if not isinstance(payload, dict) or not isinstance(signatures, (list, tuple)):
            raise EncodingError("malformed multiSig envelope")
        return cls(payload, signatures=signatures)


ACTION_CLASSES = (
    Order,
    Cancel,
    CancelByCloid,
    BatchModify,
    TwapOrder,
    TwapCancel,
    UsdSend,
    SpotSend,
    SendAsset,
    UsdClassTransfer,
    ApproveAgent,
    ConvertToMultiSigUser,
    MultiSig,
)
# Define a mapping of wire types to their corresponding classes
ACTION_MAP = {klass.kind.value: klass for klass in ACTION_CLASSES}


def from_wire(wire):
    """
    rebuild a typed action from its wire dictionary
    """
    if not isinstance(wire, dict):
        raise EncodingError(f"action must be a mapping, got {wire!r}")
    try:
        klass = ACTION_MAP[wire.get("type")]
    except (KeyError, TypeError):
        raise EncodingError(f"Invalid action type: {wire.get('type')!r}") from None
    return klass.from_wire(wire)


def describe(action, nonce, context):
    """
    human readable rendering of exactly what a signer is asked to approve
    """
    lines = [
        f"{action.kind.value} on {context.chain.value}",
        f"  nonce:     {nonce}",
    ]
    if context.vault_address:
        lines.append(f"  vault:     {context.vault_address}")
    if context.expires_after is not None:
        lines.append(f"  expires:   {context.expires_after}")
    if isinstance(action, MultiSig):
        lines.append(f"  multi-sig: {action.multi_sig_user}")
        lines.append(f"  submitter: {action.outer_signer}")
        action = action.inner
        lines.append(f"  inner:     {action.kind.value}")
    body = json.dumps(action.wire(nonce, context), indent=2)
    lines.extend("  " + line for line in body.splitlines())
    return "\n".join(lines)
