"""
utilities.py

WTFPL litepresence.com Dec 2021 & squidKid-deluxe Jan 2024

console helpers shared by the signing, multi-sig and peer modules
"""

# STANDARD PYTHON MODULES
import time
import traceback

# HYPERLIQUID SIGNING MODULES
from . import config

# ANSI escape codes
COLORS = {
    "red": 91,
    "green": 92,
    "yellow": 93,
    "blue": 94,
    "purple": 95,
    "cyan": 96,
}


def it(style, text):
    """
    colored text in terminal
    """
    return f"\033[{COLORS[style]}m{text}\033[0m"


def log(*args, style=None):
    """
    print protocol chatter when config.VERBOSE is set
    """
    if not config.VERBOSE:
        return
    if style is not None:
        args = [it(style, str(arg)) for arg in args]
    print(*args)


def trace(error):
    """
    print a stack trace for an exception caught in a worker thread
    """
    msg = str(type(error).__name__) + "\n"
    msg += str(error.args) + "\n"
    msg += "".join(traceback.format_exception(type(error), error, error.__traceback__))
    print(it("red", msg))


def now_ms():
    """
    wall clock in milliseconds since the unix epoch
    """
    return time.time_ns() // 1_000_000
