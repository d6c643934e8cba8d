r"""
rpc.py

  _   _ _        ____  _             _
 | | | | |      / ___|(_) __ _ _ __ (_)_ __   __ _
 | |_| | |      \___ \| |/ _` | '_ \| | '_ \ / _` |
 |  _  | |___    ___) | | (_| | | | | | | | | (_| |
 |_| |_|_____|  |____/|_|\__, |_| |_|_|_| |_|\__, |
                         |___/               |___/


WTFPL litepresence.com Dec 2021 & squidKid-deluxe Jan 2024

Collection of functions that interact with Hyperliquid nodes using a WebSocket connection.

"""

# STANDARD PYTHON MODULES
import json
import time
from random import shuffle

# THIRD PARTY MODULES
from websocket import WebSocketException, WebSocketTimeoutException
from websocket import create_connection as wss  # handshake to node

# HYPERLIQUID SIGNING MODULES
from .config import ATTEMPTS, HANDSHAKE_TIMEOUT, NODES, POST_TIMEOUT
from .errors import NetworkError, SubmissionError
from .utilities import it, log

# substrings of exchange error messages, checked in order
REJECTIONS = (
    ("nonce", "stale_nonce"),
    ("tick", "off_tick"),
    ("multi-sig", "threshold_mismatch"),
    ("multisig", "threshold_mismatch"),
    ("threshold", "threshold_mismatch"),
    ("authorized user", "threshold_mismatch"),
    ("insufficient", "insufficient_balance"),
    ("balance", "insufficient_balance"),
    ("margin", "insufficient_balance"),
)


def wss_handshake(chain="Mainnet", rpc=None):
    """
    create a wss handshake in less than X seconds, else try the next node
    """
    nodes = list(NODES[chain])
    shuffle(nodes)
    if rpc is not None:
        rpc.close()  # close open stale connection
    for attempt in range(ATTEMPTS * len(nodes)):
        node = nodes[attempt % len(nodes)]
        start = time.time()
        try:
            rpc = wss(node, timeout=HANDSHAKE_TIMEOUT)
        except (WebSocketException, OSError) as error:
            log(it("yellow", f"handshake with {node} failed: {error}"))
            continue
        log(it("cyan", f"connected to {node} in {time.time() - start:.3f} sec"))
        return rpc
    raise NetworkError(f"no {chain} node answered")


def wss_post(rpc, kind, payload, request_id=1):
    """
    this definition will place all post requests; kind is "info" or "action"

    returns the response payload
    """
    query = json.dumps(
        {
            "method": "post",
            "id": request_id,
            "request": {"type": kind, "payload": payload},
        }
    )
    deadline = time.time() + POST_TIMEOUT
    try:
        rpc.send(query)
        while True:
            rpc.settimeout(max(0.1, deadline - time.time()))
            ret = json.loads(rpc.recv())
            # subscription traffic and pongs share the socket
            if ret.get("channel") != "post" or ret["data"].get("id") != request_id:
                if time.time() > deadline:
                    raise NetworkError("no reply to post request")
                continue
            break
        response = ret["data"]["response"]
        kind, payload = response.get("type"), response.get("payload")
    except WebSocketTimeoutException as error:
        raise NetworkError("no reply to post request") from error
    except (WebSocketException, OSError) as error:
        raise NetworkError(f"websocket failed: {error}") from error
    except (ValueError, KeyError, AttributeError) as error:
        raise NetworkError("unreadable reply from node") from error
    if kind == "error":
        raise SubmissionError(classify(str(payload)), str(payload))
    return payload


def classify(message):
    """
    map an exchange error message to a rejection reason
    """
    lowered = message.lower()
    for needle, reason in REJECTIONS:
        if needle in lowered:
            return reason
    return "unknown"


def order_statuses(payload):
    """
    per order statuses of an accepted order or modify response
    """
    try:
        statuses = payload["response"]["data"]["statuses"]
    except (KeyError, TypeError):
        return []
    return statuses if isinstance(statuses, list) else []


def rpc_submit(rpc, signed, request_id=1):
    """
    post a SignedAction; returns the exchange's response

    raises SubmissionError when the action is refused outright or when every
    order in it is refused
    """
    ret = wss_post(rpc, "action", signed.payload(), request_id)
    log(json.dumps(ret, indent=4))
    if not isinstance(ret, dict):
        raise SubmissionError("unknown", str(ret))
    if ret.get("status") != "ok":
        message = str(ret.get("response", ret))
        raise SubmissionError(classify(message), message)
    statuses = order_statuses(ret)
    errors = [s["error"] for s in statuses if isinstance(s, dict) and "error" in s]
    if errors and len(errors) == len(statuses):
        raise SubmissionError(classify(errors[0]), "; ".join(errors))
    return ret


def rpc_multi_sig_config(rpc, user):
    """
    authorized users and threshold of a multi-sig account, None for ordinary
    accounts
    """
    ret = wss_post(rpc, "info", {"type": "userToMultiSigSigners", "user": user})
    if not ret:
        return None
    data = ret.get("data", ret) if isinstance(ret, dict) else ret
    if not data:
        return None
    try:
        return [u.lower() for u in data["authorizedUsers"]], int(data["threshold"])
    except (KeyError, TypeError, AttributeError, ValueError) as error:
        raise NetworkError("unreadable multi-sig configuration") from error


def rpc_meta(rpc, dex=""):
    """
    the perp universe: a list of {"name", "szDecimals", ...} by asset index
    """
    ret = wss_post(rpc, "info", {"type": "meta", "dex": dex})
    data = ret.get("data", ret) if isinstance(ret, dict) else ret
    try:
        return data["universe"]
    except (KeyError, TypeError) as error:
        raise NetworkError("unreadable market metadata") from error
