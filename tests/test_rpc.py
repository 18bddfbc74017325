"""Tests for endpoint fallback, batch validation and token reads."""

import json

import httpx
import pytest

from bazaar_sdk.chain.abi import ERC20_DECIMALS, SWAP_PROTOCOL_FEE
from bazaar_sdk.chain.rpc import RpcCall, RpcPool
from bazaar_sdk.chain.tokens import (
    detect_token_kind,
    read_leg,
    read_token,
    read_token_metadata,
)
from bazaar_sdk.errors import ChainUnavailable, ContractReverted
from bazaar_sdk.orders.signing import create_party
from bazaar_sdk.orders.types import AssetKind

from fakes import NFT_TOKEN, TOKEN_A, TOKEN_B, revert_error, word

ENDPOINTS = ["https://rpc-a.test", "https://rpc-b.test", "https://rpc-c.test"]
OWNER = "0x" + "11" * 20


def _ok(body, result):
    return {"jsonrpc": "2.0", "id": body["id"], "result": result}


def _err(body, error):
    return {"jsonrpc": "2.0", "id": body["id"], "error": error}


def _pool(handler, endpoints=ENDPOINTS):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RpcPool(endpoints, http_client=client)


class TestRequestFallback:
    """Tests for single requests across endpoints."""

    @pytest.mark.asyncio
    async def test_first_endpoint_answers(self):
        seen = []

        def handler(request):
            seen.append(request.url.host)
            return httpx.Response(200, json=_ok(json.loads(request.content), "0x10"))

        pool = _pool(handler)
        response = await pool.request("eth_blockNumber", [])

        assert response.result == "0x10"
        assert response.endpoint == ENDPOINTS[0]
        assert seen == ["rpc-a.test"]

    @pytest.mark.asyncio
    async def test_falls_through_to_third_endpoint(self):
        """A transport failure and a malformed answer both move to the next endpoint."""

        def handler(request):
            body = json.loads(request.content)
            if request.url.host == "rpc-a.test":
                raise httpx.ConnectError("connection refused", request=request)
            if request.url.host == "rpc-b.test":
                return httpx.Response(200, json={"jsonrpc": "2.0", "id": -1, "result": "0x1"})
            return httpx.Response(200, json=_ok(body, "0x2a"))

        response = await _pool(handler).request("eth_blockNumber", [])

        assert response.result == "0x2a"
        assert response.endpoint == ENDPOINTS[2]

    @pytest.mark.asyncio
    async def test_http_error_and_rpc_error_fall_through(self):
        def handler(request):
            body = json.loads(request.content)
            if request.url.host == "rpc-a.test":
                return httpx.Response(503)
            if request.url.host == "rpc-b.test":
                error = {"code": -32005, "message": "rate limit exceeded"}
                return httpx.Response(200, json=_err(body, error))
            return httpx.Response(200, json=_ok(body, "0x1"))

        response = await _pool(handler).request("eth_chainId", [])
        assert response.endpoint == ENDPOINTS[2]

    @pytest.mark.asyncio
    async def test_revert_is_not_retried(self):
        seen = []

        def handler(request):
            body = json.loads(request.content)
            seen.append(request.url.host)
            error = revert_error("SenderInvalid()")
            return httpx.Response(200, json=_err(body, error))

        with pytest.raises(ContractReverted):
            await _pool(handler).request("eth_call", [{}, "latest"])
        assert seen == ["rpc-a.test"]

    @pytest.mark.asyncio
    async def test_all_endpoints_fail(self):
        def handler(request):
            return httpx.Response(502)

        with pytest.raises(ChainUnavailable, match="All 3 RPC endpoints failed"):
            await _pool(handler).request("eth_blockNumber", [])

    def test_requires_an_endpoint(self):
        with pytest.raises(ValueError):
            RpcPool([])

    @pytest.mark.asyncio
    async def test_call_decodes_first_output(self):
        def handler(request):
            return httpx.Response(200, json=_ok(json.loads(request.content), word(("uint256",), 7)))

        assert await _pool(handler).call(TOKEN_A, SWAP_PROTOCOL_FEE) == 7


class TestBatch:
    """Tests for batch validation."""

    CALLS = [RpcCall("eth_chainId", []), RpcCall("eth_blockNumber", [])]

    @pytest.mark.asyncio
    async def test_cardinality_mismatch_moves_on(self):
        def handler(request):
            body = json.loads(request.content)
            if request.url.host == "rpc-a.test":
                return httpx.Response(200, json=[_ok(body[0], "0x1")])
            return httpx.Response(200, json=[_ok(entry, entry["method"]) for entry in body])

        response = await _pool(handler).batch(self.CALLS)

        assert response.endpoint == ENDPOINTS[1]
        assert [r.result for r in response.results] == ["eth_chainId", "eth_blockNumber"]

    @pytest.mark.asyncio
    async def test_id_mismatch_moves_on(self):
        def handler(request):
            body = json.loads(request.content)
            if request.url.host == "rpc-a.test":
                return httpx.Response(
                    200, json=[{"jsonrpc": "2.0", "id": 999 + i, "result": "0x1"} for i in range(2)]
                )
            return httpx.Response(200, json=[_ok(entry, "0x2") for entry in body])

        response = await _pool(handler).batch(self.CALLS)
        assert response.endpoint == ENDPOINTS[1]

    @pytest.mark.asyncio
    async def test_results_follow_request_order(self):
        def handler(request):
            body = json.loads(request.content)
            return httpx.Response(
                200, json=[_ok(entry, entry["method"]) for entry in reversed(body)]
            )

        response = await _pool(handler).batch(self.CALLS)
        assert [r.result for r in response.results] == ["eth_chainId", "eth_blockNumber"]

    @pytest.mark.asyncio
    async def test_entry_errors_stay_in_place(self):
        def handler(request):
            body = json.loads(request.content)
            entries = [
                {"jsonrpc": "2.0", "id": body[0]["id"], "error": {"code": -32000, "message": "x"}},
                _ok(body[1], "0x5"),
            ]
            return httpx.Response(200, json=entries)

        response = await _pool(handler).batch(self.CALLS)

        assert not response.results[0].ok
        assert response.results[1].ok
        assert response.endpoint == ENDPOINTS[0]

    @pytest.mark.asyncio
    async def test_third_endpoint_serves_batch(self):
        seen = []

        def handler(request):
            body = json.loads(request.content)
            seen.append(request.url.host)
            if request.url.host == "rpc-a.test":
                raise httpx.ConnectError("connection refused", request=request)
            if request.url.host == "rpc-b.test":
                return httpx.Response(503)
            return httpx.Response(200, json=[_ok(entry, entry["method"]) for entry in body])

        response = await _pool(handler).batch(self.CALLS)

        assert seen == ["rpc-a.test", "rpc-b.test", "rpc-c.test"]
        assert response.endpoint == ENDPOINTS[2]
        assert [r.result for r in response.results] == ["eth_chainId", "eth_blockNumber"]

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        response = await _pool(lambda request: httpx.Response(500)).batch([])
        assert response.results == []


class TestTokenReads:
    """Tests for token state reads over the fake node."""

    @pytest.mark.asyncio
    async def test_batch_read(self, pool, chain, swap):
        chain.fund(TOKEN_B, OWNER, 5_000_000, allowance=1_000_000)

        snapshot = await read_token(pool, TOKEN_B, OWNER, swap, {TOKEN_B.lower(): ("TKB", 6)})

        assert snapshot.mode == "batch"
        assert (snapshot.symbol, snapshot.decimals) == ("TKB", 6)
        assert snapshot.balance == 5_000_000
        assert snapshot.allowance == 1_000_000

    @pytest.mark.asyncio
    async def test_inconsistent_batch_reread_sequentially(self, chain, swap):
        """A batch that contradicts a known token's decimals is discarded."""
        chain.fund(TOKEN_B, OWNER, 5_000_000, allowance=0)

        def handler(request):
            body = json.loads(request.content)
            if not isinstance(body, list):
                return httpx.Response(200, json=chain.answer(body))
            answers = [chain.answer(entry) for entry in body]
            for entry, answer in zip(body, answers):
                if entry["params"][0]["data"] == ERC20_DECIMALS.encode():
                    answer["result"] = word(("uint8",), 18)
            return httpx.Response(200, json=answers)

        pool = _pool(handler, ["https://rpc.test"])
        snapshot = await read_token(pool, TOKEN_B, OWNER, swap, {TOKEN_B.lower(): ("TKB", 6)})

        assert snapshot.mode == "sequential"
        assert snapshot.decimals == 6
        assert snapshot.balance == 5_000_000

    @pytest.mark.asyncio
    async def test_failed_fields_use_defaults(self, pool, chain, swap):
        chain.errors["call:symbol"] = revert_error()

        snapshot = await read_token(pool, TOKEN_A, OWNER, swap)
        assert snapshot.symbol == "???"
        assert snapshot.decimals == 18

    @pytest.mark.asyncio
    async def test_failed_balance_is_unknown(self, pool, chain, swap):
        chain.fund(TOKEN_B, OWNER, 5_000_000, allowance=1_000_000)
        chain.errors[f"call:balanceOf:{TOKEN_B.lower()}"] = {
            "code": -32000,
            "message": "header not found",
        }

        snapshot = await read_token(pool, TOKEN_B, OWNER, swap)

        assert snapshot.balance is None
        assert snapshot.allowance == 1_000_000
        assert (await read_token(pool, TOKEN_A, OWNER, swap)).balance == 0

    @pytest.mark.asyncio
    async def test_metadata_known_token_is_local(self, pool, chain):
        assert await read_token_metadata(pool, TOKEN_B, {TOKEN_B.lower(): ("TKB", 6)}) == (
            "TKB",
            6,
        )
        assert chain.methods == []
        assert await read_token_metadata(pool, TOKEN_A) == ("TKA", 18)

    @pytest.mark.asyncio
    async def test_detect_kind(self, pool, chain):
        chain.add_token(NFT_TOKEN, "PUNK", 0, kind=AssetKind.ERC721)

        assert await detect_token_kind(pool, NFT_TOKEN) is AssetKind.ERC721
        assert await detect_token_kind(pool, TOKEN_A) is AssetKind.ERC20

    @pytest.mark.asyncio
    async def test_erc721_leg(self, pool, chain, swap):
        nft = chain.add_token(NFT_TOKEN, "PUNK", 0, kind=AssetKind.ERC721)
        nft.owners[7] = OWNER
        nft.approved[7] = swap
        party = create_party(OWNER, NFT_TOKEN, 1, kind=AssetKind.ERC721, token_id=7)

        leg = await read_leg(pool, party, OWNER, swap)

        assert leg.symbol == "PUNK"
        assert leg.decimals == 0
        assert leg.balance == 1
        assert leg.allowance == 1
        assert not leg.approved_for_all
