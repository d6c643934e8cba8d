"""
config.py

WTFPL litepresence.com Dec 2021 & squidKid-deluxe Jan 2024

user defined constants for hyperliquid_signing
"""

# websocket endpoints, rotated on failure
NODES = {
    "Mainnet": ["wss://api.hyperliquid.xyz/ws"],
    "Testnet": ["wss://api.hyperliquid-testnet.xyz/ws"],
}
# seconds allowed for a websocket handshake before trying the next node
HANDSHAKE_TIMEOUT = 10
# seconds to wait for the reply to a posted request
POST_TIMEOUT = 15
# number of times broker() will attempt to submit one action
ATTEMPTS = 3

# EIP-712 domain of L1 actions (orders, cancels, modifies)
L1_DOMAIN_NAME = "Exchange"
L1_DOMAIN_VERSION = "1"
L1_CHAIN_ID = 1337
# EIP-712 domain of user signed actions (transfers, approvals, multi-sig)
USER_DOMAIN_NAME = "HyperliquidSignTransaction"
USER_DOMAIN_VERSION = "1"
# arbitrum sepolia, accepted for both mainnet and testnet user signed actions
SIGNATURE_CHAIN_ID = 0x66EEE
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# most decimal places any amount may carry on the wire
MAX_WIRE_DECIMALS = 8
# price decimals allowed before subtracting the market's size decimals
MAX_PERP_DECIMALS = 6
MAX_SPOT_DECIMALS = 8
MAX_SIGNIFICANT_FIGURES = 5
# twap orders run for this many minutes
TWAP_MIN_MINUTES = 5
TWAP_MAX_MINUTES = 1440

# peer sessions; seconds
SESSION_TIMEOUT = 300
IDLE_TIMEOUT = 60
# seconds between checks of the stop flag in accept loops
ACCEPT_POLL = 0.2
# largest peer message in bytes
MAX_FRAME = 1 << 20
# tickets are only honoured this many seconds after advertise()
TICKET_LIFETIME = SESSION_TIMEOUT
TICKET_PREFIX = "hlsig1"

# print protocol chatter to the console
VERBOSE = False
