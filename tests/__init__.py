"""
Test suite for hyperliquid_signing

Contains:
- tests/unit/          : Unit tests for individual modules, peer protocol over
                         in memory and localhost transports included
"""
