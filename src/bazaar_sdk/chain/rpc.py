"""JSON-RPC access across equivalent endpoints.

Endpoints are interchangeable read replicas. A request goes to each endpoint
in order and the first well-formed answer wins; there is no retry on a single
endpoint. A revert is a logical answer and is raised immediately.
"""

import itertools
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

import httpx

from ..errors import ChainUnavailable, ContractReverted, RpcError
from .abi import ContractFunction

logger = logging.getLogger(__name__)


@dataclass
class RpcResponse:
    """A single JSON-RPC result and the endpoint that served it."""

    result: Any
    endpoint: str


@dataclass
class RpcCall:
    """One request inside a batch."""

    method: str
    params: List[Any]


@dataclass
class RpcResult:
    """One entry of a batch response: a result or an error."""

    result: Any = None
    error: Optional[RpcError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.result is not None


@dataclass
class BatchResponse:
    """Batch results in request order and the endpoint that served them."""

    results: List[RpcResult]
    endpoint: str


class RpcPool:
    """Ordered list of equivalent JSON-RPC endpoints with fallback.

    Example:
        ```python
        async with RpcPool(["https://mainnet.base.org"]) as pool:
            fee = await pool.call(swap_address, SWAP_PROTOCOL_FEE)
        ```
    """

    def __init__(
        self,
        endpoints: Sequence[str],
        timeout: float = 15.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if not endpoints:
            raise ValueError("RpcPool needs at least one endpoint")
        self.endpoints = list(endpoints)
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None
        self._ids = itertools.count(1)

    async def close(self) -> None:
        if self._owns_client:
            await self._http_client.aclose()

    async def __aenter__(self) -> "RpcPool":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _post(self, endpoint: str, payload: Any) -> Any:
        response = await self._http_client.post(
            endpoint,
            headers={"Content-Type": "application/json"},
            json=payload,
        )
        response.raise_for_status()
        return response.json()

    async def request(self, method: str, params: List[Any]) -> RpcResponse:
        """Send one request, falling through endpoints until one answers.

        Raises:
            ContractReverted: If the call reverted
            ChainUnavailable: If every endpoint failed
        """
        last_error: Optional[BaseException] = None
        for endpoint in self.endpoints:
            request_id = next(self._ids)
            payload = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}
            try:
                body = await self._post(endpoint, payload)
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"RPC {method} failed on {endpoint}: {e}")
                last_error = e
                continue

            if not isinstance(body, dict) or body.get("id") != request_id:
                last_error = RpcError(None, f"malformed response from {endpoint}")
                logger.warning(f"RPC {method} got a malformed response from {endpoint}")
                continue

            if "error" in body:
                error = RpcError.from_payload(body["error"])
                if isinstance(error, ContractReverted):
                    raise error
                logger.warning(f"RPC {method} error on {endpoint}: {error}")
                last_error = error
                continue

            if "result" not in body:
                last_error = RpcError(None, f"response without result from {endpoint}")
                continue

            return RpcResponse(result=body["result"], endpoint=endpoint)

        raise ChainUnavailable(
            f"All {len(self.endpoints)} RPC endpoints failed for {method}",
            last_error=last_error,
        )

    async def batch(self, calls: Sequence[RpcCall]) -> BatchResponse:
        """Send a batch, accepting the first endpoint that answers every id.

        Per-entry errors are returned in place; only a malformed or failed
        batch moves on to the next endpoint.

        Raises:
            ChainUnavailable: If no endpoint returned a well-formed batch
        """
        if not calls:
            return BatchResponse(results=[], endpoint=self.endpoints[0])

        last_error: Optional[BaseException] = None
        for endpoint in self.endpoints:
            ids = [next(self._ids) for _ in calls]
            payload = [
                {"jsonrpc": "2.0", "id": request_id, "method": c.method, "params": c.params}
                for request_id, c in zip(ids, calls)
            ]
            try:
                body = await self._post(endpoint, payload)
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"RPC batch failed on {endpoint}: {e}")
                last_error = e
                continue

            if not isinstance(body, list) or len(body) != len(calls):
                last_error = RpcError(None, f"batch cardinality mismatch from {endpoint}")
                logger.warning(f"RPC batch from {endpoint} has the wrong shape")
                continue

            by_id = {entry.get("id"): entry for entry in body if isinstance(entry, dict)}
            if set(by_id) != set(ids):
                last_error = RpcError(None, f"batch ids mismatch from {endpoint}")
                logger.warning(f"RPC batch from {endpoint} has mismatched ids")
                continue

            results = []
            for request_id in ids:
                entry = by_id[request_id]
                if "error" in entry:
                    results.append(RpcResult(error=RpcError.from_payload(entry["error"])))
                else:
                    results.append(RpcResult(result=entry.get("result")))
            return BatchResponse(results=results, endpoint=endpoint)

        raise ChainUnavailable(
            f"All {len(self.endpoints)} RPC endpoints failed for batch of {len(calls)}",
            last_error=last_error,
        )

    async def eth_call(
        self, to: str, data: str, sender: Optional[str] = None, value: int = 0
    ) -> RpcResponse:
        call_obj = {"to": to, "data": data}
        if sender:
            call_obj["from"] = sender
        if value:
            call_obj["value"] = hex(value)
        return await self.request("eth_call", [call_obj, "latest"])

    async def call(self, to: str, fn: ContractFunction, *args: Any) -> Any:
        """Call a view function and return its first output."""
        response = await self.eth_call(to, fn.encode(*args))
        return fn.decode_single(response.result)

    async def get_balance(self, address: str) -> int:
        response = await self.request("eth_getBalance", [address, "latest"])
        return int(response.result, 16)
