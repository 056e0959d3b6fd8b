"""Unit tests for TON wallet address validation."""

from __future__ import annotations

import base64
import binascii

import pytest

from unic.distribution.ton_address import crc16, validate_ton_address

ACCOUNT_HASH = bytes(range(32))


def _friendly(tag: int = 0x11, workchain: int = 0x00, crc: int | None = None, urlsafe: bool = True) -> str:
    body = bytes([tag, workchain]) + ACCOUNT_HASH
    checksum = crc16(body) if crc is None else crc
    data = body + checksum.to_bytes(2, "big")
    encode = base64.urlsafe_b64encode if urlsafe else base64.b64encode
    return encode(data).decode()


class TestCrc16:
    def test_xmodem_check_value(self):
        """CRC-16/XMODEM of the standard check string."""
        assert crc16(b"123456789") == 0x31C3

    def test_matches_binascii(self):
        assert crc16(ACCOUNT_HASH) == binascii.crc_hqx(ACCOUNT_HASH, 0)


class TestRawAddress:
    """Test the ``workchain:hex`` form."""

    def test_basechain(self):
        assert validate_ton_address("0:" + "ab" * 32)

    def test_masterchain(self):
        assert validate_ton_address("-1:" + "0F" * 32)

    @pytest.mark.parametrize(
        "address",
        [
            "0:" + "ab" * 31,
            "0:" + "zz" * 32,
            "x:" + "ab" * 32,
            ":" + "ab" * 32,
        ],
    )
    def test_malformed(self, address):
        assert not validate_ton_address(address)


class TestFriendlyAddress:
    """Test the 48-character base64 form."""

    def test_bounceable(self):
        address = _friendly()
        assert len(address) == 48
        assert validate_ton_address(address)

    def test_non_bounceable(self):
        assert validate_ton_address(_friendly(tag=0x51))

    def test_masterchain(self):
        assert validate_ton_address(_friendly(workchain=0xFF))

    def test_standard_base64_alphabet(self):
        assert validate_ton_address(_friendly(urlsafe=False))

    def test_bad_checksum(self):
        good = crc16(bytes([0x11, 0x00]) + ACCOUNT_HASH)
        assert not validate_ton_address(_friendly(crc=good ^ 0xFFFF))

    def test_unknown_tag(self):
        assert not validate_ton_address(_friendly(tag=0x22))

    def test_unknown_workchain(self):
        assert not validate_ton_address(_friendly(workchain=0x05))

    def test_wrong_length(self):
        assert not validate_ton_address(_friendly()[:-4])

    def test_testnet_flag(self):
        """Testnet-only addresses are refused on mainnet only."""
        address = _friendly(tag=0x11 | 0x80)
        assert validate_ton_address(address)
        assert validate_ton_address(address, network="testnet")
        assert not validate_ton_address(address, network="mainnet")


class TestEmptyInput:
    @pytest.mark.parametrize("address", [None, "", "   "])
    def test_rejected(self, address):
        assert not validate_ton_address(address)
