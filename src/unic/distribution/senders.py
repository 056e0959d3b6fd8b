"""
External prize delivery boundaries.

Gift delivery goes through the Telegram Bot API; coin transfers through a
TON wallet. Both are injected into the distribution engine so tests and
alternative backends can swap them out.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from unic.distribution.ton_address import validate_ton_address

if TYPE_CHECKING:
    from unic.config import Settings

logger = structlog.get_logger()


class BasePrizeSender(ABC):
    """Abstract base class for gift delivery."""

    @abstractmethod
    async def send(self, recipient_id: int, gift_id: str, message: str) -> bool:
        """Deliver a gift. Returns True on success."""
        ...


class BaseChainTransfer(ABC):
    """Abstract base class for on-chain prize transfers."""

    network: str | None = None

    @abstractmethod
    async def transfer(self, address: str, amount: Decimal, memo: str) -> bool:
        """Send *amount* coins to *address*. Returns True once confirmed."""
        ...

    def validate_address(self, address: str | None) -> bool:
        return validate_ton_address(address, self.network)


class TelegramGiftSender(BasePrizeSender):
    """Send gifts via the Bot API ``sendGift`` method."""

    def __init__(
        self,
        bot_token: str,
        api_base: str = "https://api.telegram.org",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.bot_token = bot_token
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._client = client

    async def _post(self, client: httpx.AsyncClient, payload: dict[str, Any]) -> bool:
        response = await client.post(
            f"{self.api_base}/bot{self.bot_token}/sendGift",
            json=payload,
            timeout=self.timeout,
        )
        response.raise_for_status()
        body = response.json()
        if not body.get("ok", False):
            logger.warning("gift_send_rejected", description=body.get("description"))
            return False
        return True

    async def send(self, recipient_id: int, gift_id: str, message: str) -> bool:
        payload = {"user_id": recipient_id, "gift_id": gift_id, "text": message}
        try:
            if self._client is not None:
                ok = await self._post(self._client, payload)
            else:
                async with httpx.AsyncClient() as client:
                    ok = await self._post(client, payload)
        except Exception:
            logger.exception("gift_send_failed", recipient_id=recipient_id, gift_id=gift_id)
            return False
        if ok:
            logger.info("gift_sent", recipient_id=recipient_id, gift_id=gift_id)
        return ok


class TonWalletTransfer(BaseChainTransfer):
    """Transfer TON from the engine's hot wallet using tonutils."""

    def __init__(self, mnemonic: str, api_key: str = "", network: str = "testnet") -> None:
        self.mnemonic = mnemonic
        self.api_key = api_key
        self.network = network

    async def transfer(self, address: str, amount: Decimal, memo: str) -> bool:
        from tonutils.client import ToncenterV3Client
        from tonutils.wallet import WalletV4R2

        if not self.mnemonic:
            msg = "TON wallet mnemonic not configured"
            raise RuntimeError(msg)

        client = ToncenterV3Client(
            api_key=self.api_key or None,
            is_testnet=self.network != "mainnet",
            rps=1,
        )
        wallet, _public_key, _private_key, _ = WalletV4R2.from_mnemonic(client, self.mnemonic.split())
        tx_hash = await wallet.transfer(destination=address, amount=float(amount), body=memo)
        logger.info("ton_transfer_sent", address=address, amount=str(amount), tx_hash=tx_hash)
        return bool(tx_hash)


def create_gift_sender(settings: Settings) -> BasePrizeSender:
    return TelegramGiftSender(
        bot_token=settings.telegram_bot_token,
        api_base=settings.telegram_api_base,
        timeout=settings.prize_send_timeout_seconds,
    )


def create_chain_transfer(settings: Settings) -> BaseChainTransfer:
    return TonWalletTransfer(
        mnemonic=settings.ton_wallet_mnemonic,
        api_key=settings.ton_api_key,
        network=settings.ton_network,
    )
