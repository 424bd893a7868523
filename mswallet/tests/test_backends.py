"""
Tests for the Esplora backend (mocked HTTP).
"""

import httpx
import pytest

from mscore.errors import BroadcastError
from mswallet.backends.esplora import EsploraBackend

BASE = "https://esplora.test/api"
ADDRESS = "tb1qrp33g0q5c5txsp9arysrx4k6zdkfs4nce4xj0gdcccefvpysxf3q0sl5k7"

UTXO_RESPONSE = [
    {
        "txid": "aa" * 32,
        "vout": 1,
        "value": 60_000,
        "status": {"confirmed": True, "block_height": 2_500_000},
    },
    {"txid": "bb" * 32, "vout": 0, "value": 40_000, "status": {"confirmed": False}},
]


def make_backend(handler, **kwargs) -> EsploraBackend:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return EsploraBackend(base_url=BASE + "/", client=client, retry_delay=0, **kwargs)


class TestFetchUtxos:
    @pytest.mark.asyncio
    async def test_parses_response(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json=UTXO_RESPONSE)

        backend = make_backend(handler)
        try:
            utxos = await backend.fetch_utxos(ADDRESS)
        finally:
            await backend.close()

        assert seen == [f"{BASE}/address/{ADDRESS}/utxo"]
        assert [(u.txid, u.vout, u.value) for u in utxos] == [
            ("aa" * 32, 1, 60_000),
            ("bb" * 32, 0, 40_000),
        ]
        assert utxos[0].confirmed and utxos[0].height == 2_500_000
        assert not utxos[1].confirmed and utxos[1].height is None

    @pytest.mark.asyncio
    async def test_empty_address(self):
        backend = make_backend(lambda request: httpx.Response(200, json=[]))
        try:
            assert await backend.fetch_utxos(ADDRESS) == []
        finally:
            await backend.close()

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls < 3:
                return httpx.Response(503)
            return httpx.Response(200, json=UTXO_RESPONSE)

        backend = make_backend(handler, max_retries=3)
        try:
            utxos = await backend.fetch_utxos(ADDRESS)
        finally:
            await backend.close()

        assert calls == 3
        assert len(utxos) == 2

    @pytest.mark.asyncio
    async def test_retries_exhausted(self):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            raise httpx.ConnectError("connection refused", request=request)

        backend = make_backend(handler, max_retries=2)
        try:
            with pytest.raises(httpx.ConnectError):
                await backend.fetch_utxos(ADDRESS)
        finally:
            await backend.close()

        assert calls == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(400, text="Invalid Bitcoin address")

        backend = make_backend(handler)
        try:
            with pytest.raises(httpx.HTTPStatusError):
                await backend.fetch_utxos("garbage")
        finally:
            await backend.close()

        assert calls == 1


class TestBroadcast:
    @pytest.mark.asyncio
    async def test_success(self):
        raw_hex = "0200000000"
        txid = "cd" * 32

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "POST"
            assert str(request.url) == f"{BASE}/tx"
            assert request.content == raw_hex.encode()
            return httpx.Response(200, text=txid + "\n")

        backend = make_backend(handler)
        try:
            assert await backend.broadcast(raw_hex) == txid
        finally:
            await backend.close()

    @pytest.mark.asyncio
    async def test_rejection_is_verbatim(self):
        body = "sendrawtransaction RPC error: min relay fee not met"
        backend = make_backend(lambda request: httpx.Response(400, text=body))
        try:
            with pytest.raises(BroadcastError) as exc:
                await backend.broadcast("00")
        finally:
            await backend.close()

        assert exc.value.status_code == 400
        assert exc.value.body == body
