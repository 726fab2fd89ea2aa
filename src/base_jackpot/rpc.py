from __future__ import annotations

import json
import time
from typing import Any, Callable, Dict, List, Optional, Union

import httpx

BlockTag = Union[int, str]


def _block_param(block: BlockTag) -> str:
    if isinstance(block, int):
        return hex(block)
    return block


class RpcClient:
    """Just the EVM JSON-RPC calls the jackpot tooling needs."""

    def __init__(
        self,
        rpc_url: str,
        timeout_s: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.client = httpx.Client(timeout=timeout_s, transport=transport)
        self._next_id = 1

    def close(self) -> None:
        self.client.close()

    def _post(self, method: str, params: List[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": self._next_id,
            "method": method,
            "params": params,
        }
        self._next_id += 1
        resp = self.client.post(self.rpc_url, json=payload)
        resp.raise_for_status()
        data = resp.json()
        if "error" in data:
            raise RuntimeError(f"RPC error: {data['error']}")
        return data.get("result")

    def get_block_number(self) -> int:
        """Returns the latest block number."""
        return int(self._post("eth_blockNumber", []), 16)

    def get_block(self, block: BlockTag = "latest") -> Dict[str, Any]:
        result = self._post("eth_getBlockByNumber", [_block_param(block), False])
        if not result:
            raise RuntimeError(f"Block {block}: eth_getBlockByNumber returned nothing.")
        return result

    def get_blockhash(self, block: BlockTag = "finalized") -> str:
        result = self.get_block(block)
        if "hash" not in result or not result["hash"]:
            raise RuntimeError(f"Block {block}: no hash in response.")
        return result["hash"]

    def get_block_timestamp(self, block: BlockTag = "latest") -> int:
        """Returns the Unix timestamp of a block."""
        result = self.get_block(block)
        if result.get("timestamp") is None:
            raise RuntimeError(f"Timestamp not available for block {block}")
        return int(result["timestamp"], 16)

    def get_gas_price(self) -> int:
        return int(self._post("eth_gasPrice", []), 16)


def _measure(fn: Callable[[], Any], num_requests: int) -> Dict[str, float]:
    timings: List[float] = []
    for _ in range(num_requests):
        start = time.perf_counter()
        fn()
        timings.append((time.perf_counter() - start) * 1000.0)
    return {
        "requests": float(num_requests),
        "avg_ms": sum(timings) / len(timings),
        "min_ms": min(timings),
        "max_ms": max(timings),
    }


def benchmark_rpc(rpc: RpcClient, num_requests: int = 10) -> Dict[str, Dict[str, float]]:
    """Latency of the calls a round operator depends on."""
    if num_requests <= 0:
        raise ValueError("num_requests must be positive")
    latest = rpc.get_block_number()
    return {
        "eth_blockNumber": _measure(rpc.get_block_number, num_requests),
        "eth_getBlockByNumber": _measure(lambda: rpc.get_block(latest), num_requests),
        "eth_gasPrice": _measure(rpc.get_gas_price, num_requests),
    }


def load_blockhash_from_block_feed_file(
    path: str, block_hint: Optional[int] = None, strict: bool = False
) -> str:
    """
    Supports:
    1) Raw blockhash string in file
    2) JSON object containing:
       - {"hash": "..."} or {"blockhash": "..."}
       - {"result": {"hash": "..."}}   (a saved eth_getBlockByNumber response)
       - {"number": 123, "hash": "..."}   (optionally verified against block_hint)
       - {"blocks": {"123": {"hash": "..."}}}  (optionally with block_hint)

    With strict=True the file must name the block: a raw string or an entry
    without a number is rejected, and the number must equal block_hint.
    """
    with open(path, "r", encoding="utf-8") as f:
        raw = f.read().strip()

    # If it's just a blockhash string
    if raw and raw[0] != "{":
        if strict:
            raise RuntimeError("Block feed file has no block number; expected JSON with number and hash.")
        return raw

    try:
        j = json.loads(raw)
    except Exception as e:
        raise RuntimeError(f"Block feed file is not valid JSON or raw string: {e}")

    def _hash_of(obj: Any) -> Optional[str]:
        if not isinstance(obj, dict):
            return None
        for key in ("hash", "blockhash"):
            if isinstance(obj.get(key), str):
                return obj[key]
        return None

    def _check_number(obj: Dict[str, Any]) -> None:
        number = obj.get("number")
        if number is None or block_hint is None:
            if strict:
                raise RuntimeError("Block feed entry has no block number to check.")
            return
        number = int(number, 16) if isinstance(number, str) else int(number)
        if number != int(block_hint):
            raise RuntimeError(
                f"Block feed number mismatch: file block={number} vs expected block={block_hint}"
            )

    if isinstance(j, dict):
        found = _hash_of(j)
        if found:
            _check_number(j)
            return found

        found = _hash_of(j.get("result"))
        if found:
            _check_number(j["result"])
            return found

        # A feed of many blocks
        if block_hint is not None and isinstance(j.get("blocks"), dict):
            found = _hash_of(j["blocks"].get(str(int(block_hint))))
            if found:
                return found

    raise RuntimeError(
        "Could not find a blockhash in block feed file. "
        "Expected raw string or JSON with hash/result.hash/(blocks[number].hash)."
    )
