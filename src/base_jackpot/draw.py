from __future__ import annotations

import hashlib
from bisect import bisect_right
from dataclasses import dataclass
from typing import Iterable, List, Tuple, Union

from .project_constants import TOKEN_DECIMALS


@dataclass(frozen=True)
class TicketRange:
    address: str
    weight: int
    start_ticket: int
    end_ticket: int  # exclusive


RandomValue = Union[int, bytes, str]


def to_tokens(raw_amount: int) -> float:
    return round(raw_amount / (10**TOKEN_DECIMALS), 1)


def build_ranges(entrants: Iterable[Tuple[str, int]]) -> Tuple[List[TicketRange], int]:
    """Lay entrants end to end in the given order; returns (ranges, total weight)."""
    ranges: List[TicketRange] = []
    cursor = 0
    for addr, weight in entrants:
        if weight <= 0:
            continue
        start = cursor
        end = cursor + weight
        ranges.append(TicketRange(addr, weight, start, end))
        cursor = end
    return ranges, cursor


def random_to_int(value: RandomValue) -> int:
    """Accepts an int, raw bytes, or a 0x-prefixed / bare hex string (bytes32)."""
    if isinstance(value, bool):
        raise TypeError("Random value must not be a bool")
    if isinstance(value, int):
        if value < 0:
            raise ValueError("Random value must not be negative")
        return value
    if isinstance(value, (bytes, bytearray)):
        return int.from_bytes(value, "big")
    if isinstance(value, str):
        text = value[2:] if value.lower().startswith("0x") else value
        return int(text, 16)
    raise TypeError(f"Unsupported random value type: {type(value).__name__}")


def derive_random_value(seed: str, blockhash: str) -> Tuple[int, str]:
    """Mix the requester's seed with a finalized blockhash: sha256(seed || blockhash)."""
    digest_hex = hashlib.sha256((seed + blockhash).encode("utf-8")).hexdigest()
    return int(digest_hex, 16), digest_hex


def compute_ticket(random_value: RandomValue, total_tickets: int) -> int:
    if total_tickets <= 0:
        raise RuntimeError("No tickets to draw from.")
    return random_to_int(random_value) % total_tickets


def find_winner(ranges: List[TicketRange], ticket: int) -> TicketRange:
    # First range whose cumulative end exceeds the ticket.
    ends = [r.end_ticket for r in ranges]
    idx = bisect_right(ends, ticket)
    if idx >= len(ranges):
        raise RuntimeError("Ticket out of range (unexpected).")
    return ranges[idx]
