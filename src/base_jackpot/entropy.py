from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .draw import RandomValue, derive_random_value
from .errors import EntropyError
from .project_constants import ENTROPY_BLOCK_DELAY

log = logging.getLogger(__name__)

RandomnessCallback = Callable[[int, RandomValue], Any]


@dataclass
class EntropyRequest:
    request_id: int
    seed: str
    fee_paid: int
    fulfilled: bool = False
    random_value: Optional[str] = None  # hex, once delivered
    target_block: Optional[int] = None


class EntropyProvider:
    """
    Request/callback randomness source. request_randomness() only records
    the request; the value arrives later through the bound consumer.
    """

    def __init__(self, fee: int = 0) -> None:
        self.fee = fee
        self.requests: Dict[int, EntropyRequest] = {}
        self.next_request_id = 1
        self._consumer: Optional[RandomnessCallback] = None

    def bind(self, consumer: RandomnessCallback) -> None:
        self._consumer = consumer

    def get_fee(self) -> int:
        return self.fee

    def request_randomness(self, seed: str, fee: int) -> int:
        if fee < self.fee:
            raise EntropyError(f"Insufficient fee: required {self.fee}, got {fee}")
        target_block = self._target_block()
        request_id = self.next_request_id
        self.next_request_id += 1
        self.requests[request_id] = EntropyRequest(
            request_id, seed, fee, target_block=target_block
        )
        log.debug("Entropy request %d recorded (seed=%s)", request_id, seed)
        return request_id

    def _target_block(self) -> Optional[int]:
        return None

    def _deliver(self, request_id: int, random_value: RandomValue) -> Any:
        if self._consumer is None:
            raise EntropyError("No consumer bound to entropy provider")
        return self._consumer(request_id, random_value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fee": str(self.fee),
            "next_request_id": self.next_request_id,
            "requests": [
                {
                    "request_id": r.request_id,
                    "seed": r.seed,
                    "fee_paid": str(r.fee_paid),
                    "fulfilled": r.fulfilled,
                    "random_value": r.random_value,
                    "target_block": r.target_block,
                }
                for r in self.requests.values()
            ],
        }

    def load_dict(self, data: Dict[str, Any]) -> None:
        self.fee = int(data.get("fee", self.fee))
        self.next_request_id = int(data.get("next_request_id", 1))
        self.requests = {}
        for r in data.get("requests", []):
            req = EntropyRequest(
                request_id=int(r["request_id"]),
                seed=r["seed"],
                fee_paid=int(r["fee_paid"]),
                fulfilled=bool(r.get("fulfilled", False)),
                random_value=r.get("random_value"),
                target_block=r.get("target_block"),
            )
            self.requests[req.request_id] = req


class MockEntropyProvider(EntropyProvider):
    """Test double: the caller decides the random value and when it arrives."""

    def trigger_callback(self, request_id: int, random_value: RandomValue) -> Any:
        # Unknown ids are forwarded on purpose so consumers can be tested
        # against stale callbacks.
        result = self._deliver(request_id, random_value)
        req = self.requests.get(request_id)
        if req is not None:
            req.fulfilled = True
        return result


class BlockhashEntropyProvider(EntropyProvider):
    """
    Derives randomness from sha256(seed || blockhash). The block is pinned
    when the request is made (chain head + block_delay), so the seed is
    committed before its hash exists and only that block can settle it.
    """

    def __init__(
        self,
        fee: int = 0,
        block_delay: int = ENTROPY_BLOCK_DELAY,
        block_source: Optional[Callable[[], int]] = None,
    ) -> None:
        super().__init__(fee)
        if block_delay < 1:
            raise EntropyError("block_delay must be at least 1")
        self.block_delay = block_delay
        # Returns the current chain head block number.
        self.block_source = block_source

    def _target_block(self) -> Optional[int]:
        if self.block_source is None:
            raise EntropyError("No block source; cannot pin the target block")
        return int(self.block_source()) + self.block_delay

    def fulfill(self, request_id: int, block_number: int, blockhash: str) -> Any:
        req = self.requests.get(request_id)
        if req is None:
            raise EntropyError(f"Unknown entropy request {request_id}")
        if req.fulfilled:
            raise EntropyError(f"Entropy request {request_id} already fulfilled")
        if req.target_block is None:
            raise EntropyError(f"Entropy request {request_id} has no target block")
        if block_number != req.target_block:
            raise EntropyError(
                f"Block {block_number} is not the target block {req.target_block}"
            )
        if self.block_source is not None:
            head = int(self.block_source())
            if head < req.target_block:
                raise EntropyError(
                    f"Target block {req.target_block} not reached (head {head})"
                )

        value, digest_hex = derive_random_value(req.seed, blockhash)
        log.info(
            "Request %d: block %d hash %s -> %s",
            request_id, block_number, blockhash, digest_hex,
        )
        result = self._deliver(request_id, value)
        req.fulfilled = True
        req.random_value = "0x" + digest_hex
        return result

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["block_delay"] = self.block_delay
        return data

    def load_dict(self, data: Dict[str, Any]) -> None:
        super().load_dict(data)
        self.block_delay = int(data.get("block_delay", self.block_delay))
