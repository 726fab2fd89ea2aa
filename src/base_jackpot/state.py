from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import asdict
from typing import Any, Callable, Dict, Optional, Tuple

from .config import JackpotConfig
from .entropy import BlockhashEntropyProvider, EntropyProvider
from .jackpot import BaseJackpot, LiquidityProvider, RoundPhase, User
from .token import InMemoryToken

log = logging.getLogger(__name__)

STATE_VERSION = 1


def jackpot_to_dict(jackpot: BaseJackpot, token: InMemoryToken) -> Dict[str, Any]:
    return {
        "version": STATE_VERSION,
        "address": jackpot.address,
        "config": asdict(jackpot.config),
        "round": {
            "round_number": jackpot.round_number,
            "phase": jackpot.phase.value,
            "jackpot_lock": jackpot.jackpot_lock,
            "pending_randomness_request_id": jackpot.pending_randomness_request_id,
            "user_pool_total": str(jackpot.user_pool_total),
            "lp_pool_total": str(jackpot.lp_pool_total),
            "lp_stake_total": str(jackpot.lp_stake_total),
            "last_jackpot_end_time": jackpot.last_jackpot_end_time,
            "last_winner_address": jackpot.last_winner_address,
            "last_win_amount": str(jackpot.last_win_amount),
            "round_entrants": list(jackpot.round_entrants),
        },
        "lps": {
            addr: {
                "principal": str(lp.principal),
                "stake": str(lp.stake),
                "risk_percentage": lp.risk_percentage,
                "active": lp.active,
            }
            for addr, lp in jackpot.lps.items()
        },
        "users": {
            addr: {
                "tickets_purchased_total_bps": str(u.tickets_purchased_total_bps),
                "winnings_claimable": str(u.winnings_claimable),
                "active": u.active,
            }
            for addr, u in jackpot.users.items()
        },
        "referral_fees": {a: str(v) for a, v in jackpot.referral_fees.items()},
        "referral_fees_total": str(jackpot.referral_fees_total),
        "protocol_fees_claimable": str(jackpot.protocol_fees_claimable),
        "token": token.to_dict(),
        "entropy": jackpot.entropy.to_dict(),
    }


def jackpot_from_dict(
    data: Dict[str, Any],
    entropy: Optional[EntropyProvider] = None,
    clock: Callable[[], float] = time.time,
) -> Tuple[BaseJackpot, InMemoryToken]:
    if data.get("version") != STATE_VERSION:
        raise RuntimeError(f"Unsupported state version: {data.get('version')}")

    token = InMemoryToken.from_dict(data["token"])
    entropy = entropy or BlockhashEntropyProvider()
    entropy.load_dict(data.get("entropy", {}))

    jackpot = BaseJackpot(
        token=token,
        entropy=entropy,
        config=JackpotConfig(**data["config"]),
        address=data["address"],
        clock=clock,
    )

    rnd = data["round"]
    jackpot.round_number = int(rnd["round_number"])
    jackpot.phase = RoundPhase(rnd["phase"])
    jackpot.jackpot_lock = bool(rnd["jackpot_lock"])
    jackpot.pending_randomness_request_id = rnd["pending_randomness_request_id"]
    jackpot.user_pool_total = int(rnd["user_pool_total"])
    jackpot.lp_pool_total = int(rnd["lp_pool_total"])
    jackpot.lp_stake_total = int(rnd["lp_stake_total"])
    jackpot.last_jackpot_end_time = int(rnd["last_jackpot_end_time"])
    jackpot.last_winner_address = rnd["last_winner_address"]
    jackpot.last_win_amount = int(rnd["last_win_amount"])
    jackpot.round_entrants = list(rnd["round_entrants"])

    jackpot.lps = {
        addr: LiquidityProvider(
            principal=int(v["principal"]),
            stake=int(v["stake"]),
            risk_percentage=int(v["risk_percentage"]),
            active=bool(v["active"]),
        )
        for addr, v in data["lps"].items()
    }
    jackpot.users = {
        addr: User(
            tickets_purchased_total_bps=int(v["tickets_purchased_total_bps"]),
            winnings_claimable=int(v["winnings_claimable"]),
            active=bool(v["active"]),
        )
        for addr, v in data["users"].items()
    }
    jackpot.referral_fees = {a: int(v) for a, v in data["referral_fees"].items()}
    jackpot.referral_fees_total = int(data["referral_fees_total"])
    jackpot.protocol_fees_claimable = int(data["protocol_fees_claimable"])
    return jackpot, token


def save_state(path: str, jackpot: BaseJackpot, token: InMemoryToken) -> None:
    # Write-then-rename so a crash never leaves a half-written ledger.
    tmp_path = f"{path}.tmp"
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(jackpot_to_dict(jackpot, token), f, indent=2)
    os.replace(tmp_path, path)
    log.debug("State saved to %s", path)


def load_state(
    path: str,
    entropy: Optional[EntropyProvider] = None,
    clock: Callable[[], float] = time.time,
) -> Tuple[BaseJackpot, InMemoryToken]:
    if not os.path.exists(path):
        raise RuntimeError(f"No jackpot state at {path}. Run `base-jackpot init` first.")
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return jackpot_from_dict(data, entropy=entropy, clock=clock)
