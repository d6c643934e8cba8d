r"""
build_action.py

  _   _ _        ____  _             _
 | | | | |      / ___|(_) __ _ _ __ (_)_ __   __ _
 | |_| | |      \___ \| |/ _` | '_ \| | '_ \ / _` |
 |  _  | |___    ___) | | (_| | | | | | | | | (_| |
 |_| |_|_____|  |____/|_|\__, |_| |_|_|_| |_|\__, |
                         |___/               |___/


WTFPL litepresence.com Dec 2021 & squidKid-deluxe Jan 2024

Build exchange actions from human-readable edicts

"""

# HYPERLIQUID SIGNING MODULES
from .actions import (ApproveAgent, BatchModify, Cancel, CancelByCloid,
                      ConvertToMultiSigUser, Order, SendAsset, SpotSend,
                      TwapCancel, TwapOrder, UsdClassTransfer, UsdSend)
from .context import SigningContext
from .errors import EncodingError
from .markets import Market, round_price, round_size
from .utilities import it, log

SUPPORTED_EDICTS = (
    "buy",
    "sell",
    "cancel",
    "cancel_cloid",
    "modify",
    "twap",
    "twap_cancel",
    "usd_send",
    "spot_send",
    "send_asset",
    "class_transfer",
    "approve_agent",
    "convert_multisig",
)
# most orders, cancels or modifies carried by one action
LIMIT = 50


def prototype_order(info):
    """
    Generates a prototype order: a header with the account, network and market
    metadata every edict is built against, and an empty list of edicts.

    Parameters:
    info (dict): A dictionary containing order-specific information, notably:
                - `account`: The signing account's address.
                - `markets`: A list of Market, or of exchange "universe" entries
                             whose position is the asset index.
                - `chain`: "Mainnet" (default) or "Testnet".
                - `vault_address`: Optional vault or subaccount to act for.
                - `expires_after`: Optional ms timestamp after which L1
                                   actions are refused.
                - `grouping`: "na" (default), "normalTpsl" or "positionTpsl".
                - `builder`: Optional {"b": address, "f": fee}.

    Returns:
    dict: A dictionary representing a prototype order, containing the
          `header` and empty `edicts`.  To make it not a prototype, add your
          operations to the "edicts" list.
    """
    markets = {}
    for index, market in enumerate(info.get("markets", [])):
        if not isinstance(market, Market):
            market = Market.from_meta(market, index)
        markets[market.name] = market
    header = {
        "account": info["account"],
        "chain": info.get("chain", "Mainnet"),
        "markets": markets,
        "vault_address": info.get("vault_address"),
        "expires_after": info.get("expires_after"),
        "grouping": info.get("grouping", "na"),
        "builder": info.get("builder"),
    }
    return {"header": header, "edicts": []}


def signing_context(header):
    """
    the SigningContext an order header describes
    """
    return SigningContext(
        chain=header.get("chain", "Mainnet"),
        vault_address=header.get("vault_address"),
        expires_after=header.get("expires_after"),
    )


def market_of(header, edict):
    try:
        return header["markets"][edict["market"]]
    except KeyError:
        raise EncodingError(f"unknown market in edict {edict}") from None


def order_wire(header, edict, is_buy):
    """
    one buy or sell edict as an order wire dict, price and size rounded
    """
    market = market_of(header, edict)
    wire = {
        "a": market.asset,
        "b": is_buy,
        "p": round_price(edict["price"], market),
        "s": round_size(edict["amount"], market),
        "r": bool(edict.get("reduce_only", False)),
    }
    if "trigger" in edict:
        trigger = edict["trigger"]
        wire["t"] = {
            "trigger": {
                "isMarket": bool(trigger.get("is_market", True)),
                "triggerPx": round_price(trigger["price"], market),
                "tpsl": trigger["tpsl"],
            }
        }
    else:
        wire["t"] = {"limit": {"tif": edict.get("tif", "Gtc")}}
    if edict.get("cloid") is not None:
        wire["c"] = edict["cloid"]
    return wire


def batches(items):
    return [items[i : i + LIMIT] for i in range(0, len(items), LIMIT)]


def build_cancels(header, cancel_edicts, cloid_edicts):
    """
    Translate cancel edicts to cancel and cancelByCloid actions
    """
    actions = []
    cancels = []
    for edict in cancel_edicts:
        asset = market_of(header, edict).asset
        cancels.extend({"a": asset, "o": oid} for oid in edict["oids"])
    actions += [Cancel(cancels=batch) for batch in batches(cancels)]
    cancels = []
    for edict in cloid_edicts:
        asset = market_of(header, edict).asset
        cancels.extend({"asset": asset, "cloid": cloid} for cloid in edict["cloids"])
    actions += [CancelByCloid(cancels=batch) for batch in batches(cancels)]
    return actions


def build_orders(header, buy_edicts, sell_edicts):
    """
    Translate buy and sell edicts to order actions of at most LIMIT orders
    """
    orders = [order_wire(header, e, True) for e in buy_edicts]
    orders += [order_wire(header, e, False) for e in sell_edicts]
    grouping = header.get("grouping", "na")
    if grouping != "na" and len(orders) > LIMIT:
        raise EncodingError(f"a {grouping} group can not hold more than {LIMIT} orders")
    actions = []
    for batch in batches(orders):
        kwargs = {"orders": batch, "grouping": grouping}
        if header.get("builder"):
            kwargs["builder"] = header["builder"]
        actions.append(Order(kwargs))
    return actions


def build_modifies(header, modify_edicts):
    """
    Translate modify edicts to batchModify actions of at most LIMIT modifies
    """
    modifies = [
        {"oid": edict["oid"], "order": order_wire(header, edict, edict["side"] == "buy")}
        for edict in modify_edicts
    ]
    return [BatchModify(modifies=batch) for batch in batches(modifies)]


def build_twaps(header, twap_edicts, cancel_edicts):
    """
    Translate twap and twap_cancel edicts, one action each; cancels first
    """
    actions = [
        TwapCancel(a=market_of(header, edict).asset, t=edict["twap_id"])
        for edict in cancel_edicts
    ]
    for edict in twap_edicts:
        market = market_of(header, edict)
        twap = {
            "a": market.asset,
            "b": edict["side"] == "buy",
            "s": round_size(edict["amount"], market),
            "r": bool(edict.get("reduce_only", False)),
            "m": edict["minutes"],
            "t": bool(edict.get("randomize", False)),
        }
        actions.append(TwapOrder(twap=twap))
    return actions


def build_transfers(edict_types):
    """
    Translate transfer and account edicts, one action each
    """
    actions = []
    for edict in edict_types["usd_send"]:
        actions.append(
            UsdSend(destination=edict["destination"], amount=edict["amount"])
        )
    for edict in edict_types["spot_send"]:
        actions.append(
            SpotSend(
                destination=edict["destination"],
                token=edict["token"],
                amount=edict["amount"],
            )
        )
    for edict in edict_types["send_asset"]:
        actions.append(
            SendAsset(
                destination=edict["destination"],
                sourceDex=edict.get("source_dex", ""),
                destinationDex=edict.get("destination_dex", ""),
                token=edict["token"],
                amount=edict["amount"],
                fromSubAccount=edict.get("from_sub_account", ""),
            )
        )
    for edict in edict_types["class_transfer"]:
        actions.append(
            UsdClassTransfer(
                amount=edict["amount"], toPerp=bool(edict["to_perp"])
            )
        )
    for edict in edict_types["approve_agent"]:
        actions.append(
            ApproveAgent(
                agentAddress=edict["agent_address"], agentName=edict.get("agent_name")
            )
        )
    for edict in edict_types["convert_multisig"]:
        actions.append(
            ConvertToMultiSigUser(
                signers={
                    "authorizedUsers": edict["authorized_users"],
                    "threshold": edict["threshold"],
                }
            )
        )
    return actions


def build_actions(order):
    """
    # this performs incoming edict conversion
    # from human terms to exchange terms

    # humans speak:
     - market name, side, decimal price and amount
     - buy/sell/cancel/modify/transfer

    # the exchange speaks:
     - integer asset index, 5 significant figure prices, truncated sizes
     - order/cancel/cancelByCloid/batchModify/twapOrder/usdSend/...

    # build_actions speaks:
     - list of human terms edicts in any order in
     - validated actions out; cancels first, then orders, modifies,
       twap cancels, twaps, transfers
     - no action carries more than LIMIT orders, cancels or modifies; the
       rest follow in further actions
    """
    # VALIDATE INCOMING DATA
    for key, expected_type in [("edicts", list), ("header", dict)]:
        if not isinstance(order.get(key), expected_type):
            raise EncodingError(
                f"order parameter '{key}' must be of type {expected_type.__name__}:"
                f" {order.get(key)}; is {type(order.get(key)).__name__}"
            )
    header = order["header"]
    # Sort incoming edicts by type
    edict_types = {op: [] for op in SUPPORTED_EDICTS}
    for edict in order["edicts"]:
        if edict.get("op") not in edict_types:
            raise EncodingError(f"unsupported edict {edict}")
        log(it("yellow", str({k: str(v) for k, v in edict.items()})))
        edict_types[edict["op"]].append(edict)
    try:
        actions = build_cancels(header, edict_types["cancel"], edict_types["cancel_cloid"])
        actions += build_orders(header, edict_types["buy"], edict_types["sell"])
        actions += build_modifies(header, edict_types["modify"])
        actions += build_twaps(header, edict_types["twap"], edict_types["twap_cancel"])
        actions += build_transfers(edict_types)
    except KeyError as error:
        raise EncodingError(f"edict is missing {error}") from error
    return actions
