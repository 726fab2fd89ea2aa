from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .draw import build_ranges, compute_ticket, derive_random_value, find_winner
from .jackpot import RoundResult


def build_audit(
    result: RoundResult,
    seed: Optional[str] = None,
    blockhash: Optional[str] = None,
    block_number: Optional[int] = None,
) -> Dict[str, Any]:
    """Round audit: enough to recompute the winner without the ledger."""
    return {
        "metadata": {
            "tool": "base-jackpot",
            "version": "1.0.0",
            "generated_at_utc": datetime.now(timezone.utc).isoformat(),
            "round_number": result.round_number,
            "request_id": result.request_id,
            "user_random_number": seed,
            "block_number": block_number,
            "blockhash": blockhash,
            "random_value": str(result.random_value),  # big int; store as string
            "user_pool_total": str(result.user_pool_total),
            "lp_stake_total": str(result.lp_stake_total),
            "total_ticket_weight": str(result.total_ticket_weight),
            "winning_ticket": (
                None if result.winning_ticket is None else str(result.winning_ticket)
            ),
            "used_fallback": result.used_fallback,
            "settled_at": result.settled_at,
        },
        "winner": {
            "address": result.winner,
            "win_amount": str(result.win_amount),
        },
        "lp_deltas": {addr: str(d) for addr, d in result.lp_deltas.items()},
        # Purchase order matters: it is the enumeration order of the draw.
        "all_entrants": [
            {
                "address": r.address,
                "weight": str(r.weight),
                "start_ticket": str(r.start_ticket),
                "end_ticket": str(r.end_ticket),
            }
            for r in result.entrants
        ],
    }


def write_audit(path: str, audit: Dict[str, Any]) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(audit, f, indent=2)


def verify_audit(audit_path: str) -> Dict[str, Any]:
    with open(audit_path, "r", encoding="utf-8") as f:
        audit = json.load(f)

    meta = audit["metadata"]
    winner_expected = audit["winner"]["address"]
    total_expected = int(meta["total_ticket_weight"])
    entrants = [(e["address"], int(e["weight"])) for e in audit["all_entrants"]]

    ranges, total2 = build_ranges(entrants)
    if total2 != total_expected:
        raise RuntimeError(
            f"Total weight mismatch: audit={total_expected} recomputed={total2}"
        )

    if meta["used_fallback"]:
        if ranges:
            raise RuntimeError("Fallback winner recorded but entrants hold tickets")
        return {
            "ok": True,
            "winner": winner_expected,
            "winning_ticket": None,
            "total_tickets": 0,
            "used_fallback": True,
        }

    random_value = int(meta["random_value"])
    if meta.get("user_random_number") and meta.get("blockhash"):
        derived, _ = derive_random_value(meta["user_random_number"], meta["blockhash"])
        if derived != random_value:
            raise RuntimeError("Random value does not match sha256(seed || blockhash)")

    ticket = compute_ticket(random_value, total2)
    if ticket != int(meta["winning_ticket"]):
        raise RuntimeError(
            f"Winning ticket mismatch: audit={meta['winning_ticket']} recomputed={ticket}"
        )

    winner = find_winner(ranges, ticket)
    if winner.address != winner_expected:
        raise RuntimeError(
            f"Winner mismatch: audit={winner_expected} recomputed={winner.address}"
        )

    return {
        "ok": True,
        "winner": winner.address,
        "winning_ticket": ticket,
        "total_tickets": total2,
        "used_fallback": False,
    }
