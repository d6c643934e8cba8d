r"""
```
+-------------------------------------------------------+
|    _   _ _        ____  _             _               |
|   | | | | |      / ___|(_) __ _ _ __ (_)_ __   __ _   |
|   | |_| | |      \___ \| |/ _` | '_ \| | '_ \ / _` |  |
|   |  _  | |___    ___) | | (_| | | | | | | | | (_| |  |
|   |_| |_|_____|  |____/|_|\__, |_| |_|_|_| |_|\__, |  |
|                           |___/               |___/   |
+-------------------------------------------------------+
```

WTFPL litepresence.com Dec 2021 & squidKid-deluxe Jan 2024

** ManualSigning for Hyperliquid **

---------------------------------------------------

## Authenticated ORDER/CANCEL/TRANSFER and MULTI-SIG without an SDK

Every action the exchange accepts is typed, validated, canonically encoded
and hashed exactly the way the exchange hashes it, then signed with
libsecp256k1.  Multi-sig accounts collect their threshold of co-signer
signatures either in one process or between independent processes that
rendezvous with a ticket.

## FEATURES

- `prototype_order()` generates an order header template.
- Edicts can include any combination of operations; see SUPPORTED_ACTIONS.
- Prices are rounded to 5 significant figures and the market's tick,
  sizes are truncated to the market's size decimals.
- Every signature is recovered and checked before it is submitted.
- One NonceSource per key issues strictly increasing nonces from any thread.
- `MultiSigSession` collects exactly `threshold` co-signer signatures, once.
- `Initiator` / `Participant` run the same collection over TCP or in memory;
  each co-signer rebuilds and re-hashes the action before it signs.

## HOW DO I USE THIS TOOL?

An order is structured as a dictionary of:

`['edicts', 'header']`

See `help(hyperliquid_signing.quickstart)` for detailed examples.

## DEPENDENCIES
- Python 3
- secp256k1, websocket-client, msgpack and eth-utils.
  (`pip3 install .` to get the right versions)

## LICENSE:
All remaining rights under WTFPL March 1765.
"""

from .actions import (ActionKind, ApproveAgent, BatchModify, Cancel,
                      CancelByCloid, ConvertToMultiSigUser, MultiSig, Order,
                      SendAsset, SpotSend, TwapCancel, TwapOrder,
                      UsdClassTransfer, UsdSend)
from .auth import broker, sign_action, sign_in_background, submit_multi_sig
from .build_action import SUPPORTED_EDICTS, build_actions, prototype_order
from .context import Chain, SigningContext, mainnet, testnet
from .encoder import action_digest, digest, encode
from .multisig import (MultiSigSession, collect_locally, lead_digest,
                       multi_sig, sign_envelope)
from .nonce import NonceSource
from .signing import ApprovalSigner, LocalSigner, recover, sign, verify

__all__ = [
    "broker",
    "prototype_order",
    "build_actions",
    "sign_action",
    "sign_in_background",
    "encode",
    "digest",
    "action_digest",
    "sign",
    "recover",
    "verify",
    "LocalSigner",
    "ApprovalSigner",
    "NonceSource",
    "Chain",
    "SigningContext",
    "mainnet",
    "testnet",
    "MultiSigSession",
    "collect_locally",
    "multi_sig",
    "lead_digest",
    "sign_envelope",
    "submit_multi_sig",
    "Order",
    "Cancel",
    "CancelByCloid",
    "BatchModify",
    "TwapOrder",
    "TwapCancel",
    "UsdSend",
    "SpotSend",
    "SendAsset",
    "UsdClassTransfer",
    "ApproveAgent",
    "ConvertToMultiSigUser",
    "MultiSig",
    "SUPPORTED_ACTIONS",
    "SUPPORTED_EDICTS",
    "quickstart",
]
SUPPORTED_ACTIONS = [kind.value for kind in ActionKind]


def quickstart():
    """
    from hyperliquid_signing import LocalSigner, NonceSource, broker, prototype_order

    signer = LocalSigner("0x" + "your private key hex")
    # one nonce source per key, kept for the life of the process
    nonces = NonceSource()

    # define order headers
    order = prototype_order(
        {
            "account": signer.address,
            "chain": "Testnet",
            # exchange "universe" metadata, or Market objects; position is asset index
            "markets": [{"name": "BTC", "szDecimals": 5}, {"name": "ETH", "szDecimals": 4}],
        }
    )

    # add edicts
    order["edicts"] = [
        # buy - bid `amount` of `market` at `price`; tif is Gtc, Ioc or Alo
        {
            "op": "buy",
            "market": "ETH",
            "amount": float(),
            "price": float(),
            "tif": "Gtc",
        },
        # sell - a take profit trigger; `trigger` replaces tif
        {
            "op": "sell",
            "market": "ETH",
            "amount": float(),
            "price": float(),
            "reduce_only": True,
            "trigger": {"price": float(), "is_market": True, "tpsl": "tp"},
        },
        # cancel - cancel `oids` on `market`
        {
            "op": "cancel",
            "market": "BTC",
            "oids": [int()],
        },
        # cancel_cloid - cancel by client order id
        {
            "op": "cancel_cloid",
            "market": "BTC",
            "cloids": ["0x" + "32 hex digits"],
        },
        # modify - replace order `oid` with a new price and amount
        {
            "op": "modify",
            "oid": int(),
            "market": "ETH",
            "side": "buy",
            "amount": float(),
            "price": float(),
        },
        # usd_send - move `amount` USDC to `destination`
        {
            "op": "usd_send",
            "destination": "0x...",
            "amount": float(),
        },
        # spot_send - move `amount` of spot `token` ("NAME:0x<token id>")
        {
            "op": "spot_send",
            "destination": "0x...",
            "token": str(),
            "amount": float(),
        },
        # send_asset - move between dexes ("" perp, "spot") and subaccounts
        {
            "op": "send_asset",
            "destination": "0x...",
            "source_dex": "",
            "destination_dex": "spot",
            "token": str(),
            "amount": float(),
        },
        # class_transfer - move USDC between perp and spot balances
        {
            "op": "class_transfer",
            "amount": float(),
            "to_perp": True,
        },
        # approve_agent - allow an api wallet to trade for this account
        {
            "op": "approve_agent",
            "agent_address": "0x...",
            "agent_name": str(),
        },
        # convert_multisig - make this account a `threshold` of `authorized_users`
        {
            "op": "convert_multisig",
            "authorized_users": ["0x...", "0x..."],
            "threshold": int(),
        },
    ]

    broker(order, signer, nonces)

    # multi-sig, all signers in this process
    from hyperliquid_signing import (Cancel, multi_sig, sign_envelope,
                                     submit_multi_sig, testnet)

    context = testnet()
    nonce = next(nonces)
    envelope = multi_sig(
        multi_sig_user="0x...",
        outer_signer=signer.address,
        action=Cancel(cancels=[{"a": 0, "o": 123}]),
        nonce=nonce,
        authorized=[a.address for a in (signer, cosigner_1, cosigner_2)],
        threshold=2,
        context=context,
        signers=[signer, cosigner_1, cosigner_2],
    )
    signed = sign_envelope(envelope, signer)  # under the nonce the co-signers signed
    # or sign and submit in one step
    submit_multi_sig(envelope, signer)

    # multi-sig, co-signers in other processes
    from hyperliquid_signing.discovery import TcpDiscovery
    from hyperliquid_signing.peer import Initiator, Participant

    with Initiator(session, TcpDiscovery("0.0.0.0", public_host="203.0.113.7")) as initiator:
        print(initiator.ticket)  # hand this to the co-signers
        envelope = initiator.run()

    # on each co-signer's machine
    Participant(my_signer, TcpDiscovery(), approve=lambda p: input(p.describe()) == "y").join(ticket)
    """
    pass
