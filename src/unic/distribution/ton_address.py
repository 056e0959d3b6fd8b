"""
TON wallet address format validation.

Accepts the raw form ``<workchain>:<64 hex chars>`` and the 48-character
user-friendly form (standard or URL-safe base64) whose last two bytes are a
CRC16-XMODEM checksum over the first 34.
"""

from __future__ import annotations

import base64
import binascii
import re

_RAW = re.compile(r"^(-?\d{1,10}):([0-9a-fA-F]{64})$")
_FRIENDLY = re.compile(r"^[A-Za-z0-9+/_-]{48}$")

# tag byte: 0x11 bounceable, 0x51 non-bounceable; 0x80 marks testnet-only
_TAGS = {0x11, 0x51}
_TESTNET_FLAG = 0x80
_WORKCHAINS = {0x00, 0xFF}


def crc16(data: bytes) -> int:
    """CRC16-XMODEM (poly 0x1021, init 0), as used by TON addresses."""
    return binascii.crc_hqx(data, 0)


def _validate_raw(address: str) -> bool:
    match = _RAW.match(address)
    if match is None:
        return False
    workchain = int(match.group(1))
    return -(2**31) <= workchain < 2**31


def _validate_friendly(address: str, network: str | None) -> bool:
    if _FRIENDLY.match(address) is None:
        return False
    try:
        data = base64.urlsafe_b64decode(address.replace("+", "-").replace("/", "_"))
    except (binascii.Error, ValueError):
        return False
    if len(data) != 36:
        return False

    tag = data[0]
    testnet = bool(tag & _TESTNET_FLAG)
    if (tag & ~_TESTNET_FLAG) not in _TAGS:
        return False
    if data[1] not in _WORKCHAINS:
        return False
    if crc16(data[:34]) != int.from_bytes(data[34:], "big"):
        return False
    if network == "mainnet" and testnet:
        return False
    return True


def validate_ton_address(address: str | None, network: str | None = None) -> bool:
    """Return True when *address* is a well-formed TON address.

    When *network* is ``"mainnet"``, testnet-only user-friendly addresses are
    refused. Raw addresses carry no network flag and pass on any network.
    """
    if not address or not isinstance(address, str):
        return False
    address = address.strip()
    if ":" in address:
        return _validate_raw(address)
    return _validate_friendly(address, network)
