r"""
auth.py

  _   _ _        ____  _             _
 | | | | |      / ___|(_) __ _ _ __ (_)_ __   __ _
 | |_| | |      \___ \| |/ _` | '_ \| | '_ \ / _` |
 |  _  | |___    ___) | | (_| | | | | | | | | (_| |
 |_| |_|_____|  |____/|_|\__, |_| |_|_|_| |_|\__, |
                         |___/               |___/


WTFPL litepresence.com Dec 2021 & squidKid-deluxe Jan 2024

Hyperliquid ECDSA for Buy, Sell, Cancel, Modify, Transfer, Approve, Multi-Sig

"""

# STANDARD PYTHON MODULES
import time
from concurrent.futures import ThreadPoolExecutor

# HYPERLIQUID SIGNING MODULES
from .actions import MultiSig, describe
from .build_action import build_actions, prototype_order, signing_context
from .config import ATTEMPTS
from .encoder import action_digest
from .errors import SignatureMismatch, SubmissionError
from .multisig import sign_envelope
from .nonce import NonceSource
from .rpc import rpc_submit, wss_handshake
from .signing import SignedAction, sign
from .utilities import it, log

# background signing; threads are only started on first use
EXECUTOR = ThreadPoolExecutor(max_workers=4, thread_name_prefix="hl-sign")


def sign_action(action, signer, nonce, context, timeout=None, cancel=None):
    """
    sign one action for one nonce and context

    a multi-sig envelope that already carries its co-signer signatures gets
    the outer signer's submission signature instead

    :return SignedAction:
    """
    if isinstance(action, MultiSig) and action.signatures:
        return sign_envelope(action, signer, nonce, context, timeout, cancel)
    digest = action_digest(action, nonce, context)
    signature = sign(
        digest,
        signer,
        timeout=timeout,
        cancel=cancel,
        description=describe(action, nonce, context),
    )
    return SignedAction(action, nonce, context, signature, digest)


def sign_in_background(action, signer, nonce, context, timeout=None, cancel=None):
    """
    sign_action on a worker thread

    actions and contexts are immutable, so the worker never shares mutable
    state with the caller

    :return concurrent.futures.Future: resolving to a SignedAction
    """
    return EXECUTOR.submit(sign_action, action, signer, nonce, context, timeout, cancel)


def submit_multi_sig(envelope, lead, rpc=None):
    """
    sign a finalized envelope as its outer signer and submit it

    the envelope is signed under the nonce its co-signers signed; a refusal,
    stale nonce included, is raised as SubmissionError and the signatures
    must be collected again under a fresh nonce
    """
    signed = sign_envelope(envelope, lead)
    owned = rpc is None
    if owned:
        rpc = wss_handshake(signed.context.chain.value)
    try:
        return rpc_submit(rpc, signed, request_id=signed.nonce)
    finally:
        if owned:
            rpc.close()


def transfer(info, signer, destination, amount, nonces=None):
    """
    Send USDC from the signer's perp balance to another account.
    """
    order = prototype_order(info)
    order["edicts"] = [{"op": "usd_send", "destination": destination, "amount": amount}]
    return broker(order, signer, nonces)


def approve(info, signer, agent_address, agent_name=None, nonces=None):
    """
    Allow an agent key to place orders for the signer's account.
    """
    order = prototype_order(info)
    order["edicts"] = [
        {"op": "approve_agent", "agent_address": agent_address, "agent_name": agent_name}
    ]
    return broker(order, signer, nonces)


# Main process
def broker(order, signer, nonces=None, broadcast=True, rpc=None):
    """
    Sign, verify and optionally submit every action an order's edicts describe.

    Parameters:
    order (dict): header and edicts; see prototype_order for more documentation.
    signer (Signer): key capability for the order's account.
    nonces (NonceSource): the signer's nonce source; one per key.
    broadcast (bool): submit to the exchange, else only sign and verify.
    rpc: an open websocket; one is opened for the order's chain when needed.

    Returns:
    list: the exchange responses, or the SignedActions when not broadcasting.

    Behavior:
    - Each action is signed with a fresh nonce and its signature recovered
      and compared to the signer before anything leaves the process.
    - A submission refused for its nonce is re-signed with a new nonce, up to
      `ATTEMPTS` times; every other refusal is raised as SubmissionError.
    """
    context = signing_context(order["header"])
    if nonces is None:
        nonces = NonceSource()
    start = time.time()
    actions = build_actions(order)
    owned = broadcast and rpc is None
    if owned:
        rpc = wss_handshake(context.chain.value)
    results = []
    try:
        for action in actions:
            for attempt in range(1, ATTEMPTS + 1):
                log(f"signing {action.kind.value} attempt: {attempt} {time.ctime()}")
                signed = sign_action(action, signer, next(nonces), context)
                recovered = signed.signer
                if recovered.lower() != signer.address.lower():
                    raise SignatureMismatch(signer.address, recovered)
                if not broadcast:
                    results.append(signed)
                    break
                try:
                    results.append(rpc_submit(rpc, signed, request_id=signed.nonce))
                    break
                except SubmissionError as error:
                    if not error.retryable or attempt == ATTEMPTS:
                        raise
                    log(it("yellow", f"resubmitting with a fresh nonce: {error}"))
    finally:
        if owned:
            rpc.close()
    msg = it("green", "EXECUTED ORDER" if broadcast else "SIGNED AND VERIFIED ORDER")
    stars = it("yellow", "*" * (len(msg) + 17))
    log("\n" + stars + "\n    hyperliquidSIGNING " + msg + "\n" + stars + "\n")
    log("process elapsed: %.3f sec" % (time.time() - start), "\n\n")
    return results
