"""
Esplora (Blockstream / mempool.space style) REST backend.

Endpoints used:
- GET  {base}/address/{address}/utxo
- POST {base}/tx   (body: raw transaction hex, response: txid)
"""

from __future__ import annotations

import asyncio
import os

import httpx
from loguru import logger

from mscore.errors import BroadcastError
from mswallet.backends.base import UTXO, BlockchainBackend

DEFAULT_ESPLORA_URL = "https://blockstream.info/testnet/api"
DEFAULT_TIMEOUT = 30.0

# UTXO lookups are retried; broadcasts are not
FETCH_MAX_RETRIES = 3
FETCH_BASE_DELAY = 0.5

# WARNING: Enabling this will log wallet addresses to the log
SENSITIVE_LOGGING = os.environ.get("SENSITIVE_LOGGING", "").lower() in ("1", "true", "yes")


class EsploraBackend(BlockchainBackend):
    def __init__(
        self,
        base_url: str = DEFAULT_ESPLORA_URL,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = FETCH_MAX_RETRIES,
        retry_delay: float = FETCH_BASE_DELAY,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def fetch_utxos(self, address: str) -> list[UTXO]:
        """
        List unspent outputs at `address`.

        Transport errors and 5xx responses are retried with exponential
        backoff; the last error is raised once retries run out.
        """
        url = f"{self.base_url}/address/{address}/utxo"
        shown = address if SENSITIVE_LOGGING else f"{address[:10]}..."

        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.get(url)
                response.raise_for_status()
                data = response.json()
                break
            except httpx.HTTPStatusError as e:
                if e.response.status_code < 500 or attempt == self.max_retries:
                    logger.error(f"UTXO lookup failed for {shown}: {e}")
                    raise
                logger.warning(f"UTXO lookup for {shown} returned {e.response.status_code}")
            except httpx.TransportError as e:
                if attempt == self.max_retries:
                    logger.error(f"UTXO lookup failed for {shown}: {e}")
                    raise
                logger.warning(f"UTXO lookup for {shown} failed: {e}")

            delay = self.retry_delay * (2**attempt)
            logger.debug(f"Retrying UTXO lookup in {delay:.1f}s (attempt {attempt + 1})")
            await asyncio.sleep(delay)

        utxos = [
            UTXO(
                txid=entry["txid"],
                vout=int(entry["vout"]),
                value=int(entry["value"]),
                confirmed=bool(entry.get("status", {}).get("confirmed", False)),
                height=entry.get("status", {}).get("block_height"),
            )
            for entry in data
        ]
        logger.info(f"Found {len(utxos)} UTXOs at {shown}")
        return utxos

    async def broadcast(self, raw_tx_hex: str) -> str:
        """
        Relay a raw transaction.

        Raises:
            BroadcastError: the explorer rejected it; carries status and body verbatim
        """
        try:
            response = await self.client.post(
                f"{self.base_url}/tx",
                content=raw_tx_hex,
                headers={"Content-Type": "text/plain"},
            )
        except httpx.HTTPError as e:
            logger.error(f"Broadcast request failed: {e}")
            raise

        if response.status_code >= 400:
            logger.error(f"Broadcast rejected: {response.status_code} {response.text}")
            raise BroadcastError(response.status_code, response.text)

        txid = response.text.strip()
        logger.info(f"Broadcast transaction {txid}")
        return txid

    async def close(self) -> None:
        await self.client.aclose()
