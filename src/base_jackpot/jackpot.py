from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from .config import JackpotConfig
from .draw import RandomValue, TicketRange, build_ranges, compute_ticket, find_winner, random_to_int
from .entropy import EntropyProvider
from .errors import (
    JackpotLockedError,
    NothingToWithdrawError,
    RoundNotFinishedError,
    StaleCallbackError,
    ValidationError,
)
from .project_constants import (
    BPS_DENOMINATOR,
    MAX_RISK_PERCENTAGE,
    MIN_RISK_PERCENTAGE,
    ZERO_ADDRESS,
)
from .token import Token

log = logging.getLogger(__name__)


class RoundPhase(Enum):
    OPEN = "open"
    LOCK_REQUESTED = "lock_requested"
    AWAITING_RANDOMNESS = "awaiting_randomness"
    SETTLING = "settling"


@dataclass
class LiquidityProvider:
    principal: int = 0
    stake: int = 0
    risk_percentage: int = 0
    active: bool = False


@dataclass
class User:
    tickets_purchased_total_bps: int = 0
    winnings_claimable: int = 0
    active: bool = False


@dataclass(frozen=True)
class RoundResult:
    """Everything needed to audit one settled round."""

    round_number: int
    request_id: int
    random_value: int
    winner: str
    win_amount: int
    used_fallback: bool
    user_pool_total: int
    total_ticket_weight: int
    winning_ticket: Optional[int]
    entrants: Tuple[TicketRange, ...]
    lp_stake_total: int
    lp_deltas: Dict[str, int] = field(default_factory=dict)
    settled_at: int = 0


@dataclass(frozen=True)
class JackpotStatus:
    jackpot_lock: bool
    phase: RoundPhase
    last_jackpot_end_time: int
    next_jackpot_time: int
    can_run: bool
    seconds_remaining: int


def split_pro_rata(amount: int, weights: List[Tuple[str, int]]) -> Dict[str, int]:
    """
    Split a signed integer amount across weights so the parts sum exactly
    to it. Leftover units go to the largest fractional remainders; ties fall
    to enumeration order. No part exceeds its exact share rounded up.
    """
    total = sum(w for _, w in weights)
    if total <= 0 or amount == 0:
        return {addr: 0 for addr, _ in weights}

    sign = 1 if amount > 0 else -1
    magnitude = abs(amount)

    shares: Dict[str, int] = {}
    remainders: List[Tuple[int, int, str]] = []
    for idx, (addr, weight) in enumerate(weights):
        q, r = divmod(magnitude * weight, total)
        shares[addr] = q
        remainders.append((-r, idx, addr))

    leftover = magnitude - sum(shares.values())
    for _, _, addr in sorted(remainders)[:leftover]:
        shares[addr] += 1

    return {addr: sign * share for addr, share in shares.items()}


class BaseJackpot:
    """
    LP-backed jackpot ledger and round engine.

    Every public mutator runs under one lock, so calls are serialized the
    way transactions are on chain. Between run_jackpot() and the entropy
    callback the jackpot_lock flag (not the mutex) keeps LP and ticket
    operations out.
    """

    def __init__(
        self,
        token: Token,
        entropy: EntropyProvider,
        config: Optional[JackpotConfig] = None,
        address: str = "jackpot",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.token = token
        self.entropy = entropy
        self.config = config or JackpotConfig()
        self.address = address
        self.clock = clock

        self.lps: Dict[str, LiquidityProvider] = {}
        self.users: Dict[str, User] = {}
        self.referral_fees: Dict[str, int] = {}
        self.referral_fees_total = 0
        self.protocol_fees_claimable = 0

        # Round-scoped; purchase order decides enumeration order in the draw.
        self.round_entrants: List[str] = []

        self.user_pool_total = 0
        self.lp_pool_total = 0
        self.lp_stake_total = 0
        self.last_jackpot_end_time = self._now()
        self.jackpot_lock = False
        self.phase = RoundPhase.OPEN
        self.pending_randomness_request_id: Optional[int] = None
        self.last_winner_address = ZERO_ADDRESS
        self.last_win_amount = 0
        self.round_number = 1

        self._mutex = threading.RLock()
        self.entropy.bind(self.on_randomness_ready)

    def _now(self) -> int:
        return int(self.clock())

    def _require_unlocked(self) -> None:
        if self.jackpot_lock:
            raise JackpotLockedError()

    # ------------------------------------------------------------------
    # Liquidity providers
    # ------------------------------------------------------------------

    def lp_deposit(self, caller: str, risk_percentage: int, amount: int) -> None:
        with self._mutex:
            self._require_unlocked()
            cfg = self.config
            if amount < cfg.min_lp_deposit or amount <= 0:
                raise ValidationError("Deposit amount too small")
            if not MIN_RISK_PERCENTAGE <= risk_percentage <= MAX_RISK_PERCENTAGE:
                raise ValidationError("Invalid risk percentage")
            if cfg.lp_pool_cap is not None and self.lp_pool_total + amount > cfg.lp_pool_cap:
                raise ValidationError("LP pool cap exceeded")

            lp = self.lps.get(caller)
            is_new = lp is None or not lp.active
            if is_new and self.active_lp_count() >= cfg.lp_limit:
                raise ValidationError("LP limit reached")

            self.token.transfer_from(self.address, caller, self.address, amount)

            if lp is None:
                lp = self.lps[caller] = LiquidityProvider()
            lp.principal += amount
            lp.risk_percentage = risk_percentage
            lp.active = True
            self.lp_pool_total += amount
            log.debug("LP %s deposited %d at %d%% risk", caller, amount, risk_percentage)

    def lp_withdraw_principal(self, caller: str, amount: int) -> None:
        with self._mutex:
            self._require_unlocked()
            lp = self.lps.get(caller)
            if lp is None or not lp.active:
                raise ValidationError("Not an active LP")
            if amount <= 0:
                raise ValidationError("Withdraw amount must be positive")
            if amount > lp.principal:
                raise ValidationError("Insufficient principal")

            self.token.transfer(self.address, caller, amount)

            lp.principal -= amount
            self.lp_pool_total -= amount
            if lp.principal == 0:
                del self.lps[caller]
            else:
                lp.stake = min(lp.stake, lp.principal)
            log.debug("LP %s withdrew %d", caller, amount)

    def withdraw_all_lp(self, caller: str) -> int:
        with self._mutex:
            lp = self.lps.get(caller)
            if lp is None or not lp.active:
                raise ValidationError("Not an active LP")
            amount = lp.principal
            self.lp_withdraw_principal(caller, amount)
            return amount

    def lp_adjust_risk_percentage(self, caller: str, new_risk_percentage: int) -> None:
        with self._mutex:
            self._require_unlocked()
            if not MIN_RISK_PERCENTAGE <= new_risk_percentage <= MAX_RISK_PERCENTAGE:
                raise ValidationError("Invalid risk percentage")
            lp = self.lps.get(caller)
            if lp is None or not lp.active:
                raise ValidationError("Not an active LP")
            lp.risk_percentage = new_risk_percentage

    def active_lp_count(self) -> int:
        return sum(1 for lp in self.lps.values() if lp.active)

    # ------------------------------------------------------------------
    # Tickets
    # ------------------------------------------------------------------

    def purchase_tickets(
        self,
        caller: str,
        referrer: Optional[str],
        amount: int,
        recipient: Optional[str] = None,
    ) -> int:
        """Returns the ticket weight (bps units) credited to the recipient."""
        recipient = recipient or caller
        with self._mutex:
            cfg = self.config
            if not cfg.allow_purchasing:
                raise ValidationError("Purchasing tickets not allowed")
            self._require_unlocked()
            if amount <= 0 or amount < cfg.ticket_price:
                raise ValidationError("Purchase amount below ticket price")

            user = self.users.get(recipient)
            if (user is None or not user.active) and len(self.round_entrants) >= cfg.user_limit:
                raise ValidationError("User limit reached")

            fee = amount * cfg.fee_bps // BPS_DENOMINATOR
            referral_fee = 0
            if referrer and referrer != ZERO_ADDRESS and referrer != recipient:
                referral_fee = amount * cfg.referral_fee_bps // BPS_DENOMINATOR
            net = amount - fee
            weight = amount * (BPS_DENOMINATOR - cfg.fee_bps)

            self.token.transfer_from(self.address, caller, self.address, amount)

            if referral_fee:
                self.referral_fees[referrer] = self.referral_fees.get(referrer, 0) + referral_fee
                self.referral_fees_total += referral_fee
            self.protocol_fees_claimable += fee - referral_fee

            if user is None:
                user = self.users[recipient] = User()
            if not user.active:
                user.active = True
                self.round_entrants.append(recipient)
            user.tickets_purchased_total_bps += weight
            self.user_pool_total += net

            log.debug(
                "%s bought %d for %s (net=%d fee=%d referral=%d)",
                caller,
                amount,
                recipient,
                net,
                fee,
                referral_fee,
            )
            return weight

    # ------------------------------------------------------------------
    # Round lifecycle
    # ------------------------------------------------------------------

    def run_jackpot(self, user_random_number: str, fee: int) -> int:
        """Lock the round, reserve LP stakes, and request randomness. Returns the request id."""
        with self._mutex:
            self._require_unlocked()
            now = self._now()
            next_time = self.last_jackpot_end_time + self.config.round_duration_in_seconds
            if now < next_time:
                raise RoundNotFinishedError(
                    f"Round not finished: {next_time - now}s remaining"
                )

            self.jackpot_lock = True
            self.phase = RoundPhase.LOCK_REQUESTED
            previous_stakes = {addr: lp.stake for addr, lp in self.lps.items()}
            previous_stake_total = self.lp_stake_total

            stake_total = 0
            for lp in self.lps.values():
                if not lp.active:
                    continue
                lp.stake = lp.principal * lp.risk_percentage // 100
                stake_total += lp.stake
            self.lp_stake_total = stake_total

            try:
                request_id = self.entropy.request_randomness(user_random_number, fee)
            except Exception:
                for addr, stake in previous_stakes.items():
                    self.lps[addr].stake = stake
                self.lp_stake_total = previous_stake_total
                self.jackpot_lock = False
                self.phase = RoundPhase.OPEN
                raise

            self.pending_randomness_request_id = request_id
            self.phase = RoundPhase.AWAITING_RANDOMNESS
            log.info(
                "Round %d locked: request=%d user_pool=%d lp_stake=%d",
                self.round_number,
                request_id,
                self.user_pool_total,
                stake_total,
            )
            return request_id

    def on_randomness_ready(self, request_id: int, random_value: RandomValue) -> RoundResult:
        with self._mutex:
            if (
                self.phase is not RoundPhase.AWAITING_RANDOMNESS
                or request_id != self.pending_randomness_request_id
            ):
                raise StaleCallbackError(
                    f"Unexpected randomness callback for request {request_id}"
                )
            value = random_to_int(random_value)
            self.phase = RoundPhase.SETTLING
            return self._settle(request_id, value)

    def _settle(self, request_id: int, random_value: int) -> RoundResult:
        entrants = [
            (addr, self.users[addr].tickets_purchased_total_bps)
            for addr in self.round_entrants
        ]
        ranges, total_weight = build_ranges(entrants)
        user_pool = self.user_pool_total
        stake_total = self.lp_stake_total

        lp_deltas: Dict[str, int] = {}
        winning_ticket: Optional[int] = None
        if user_pool == 0 or total_weight == 0:
            winner = self.config.fallback_winner
            win_amount = 0
            used_fallback = True
            # Nothing was at risk; release the reservation.
            for lp in self.lps.values():
                lp.stake = 0
        else:
            winning_ticket = compute_ticket(random_value, total_weight)
            winner = find_winner(ranges, winning_ticket).address
            # LP stake is the bank; without any backing the pot pays out as is.
            win_amount = stake_total if stake_total > 0 else user_pool
            used_fallback = False

            staked = [
                (addr, lp.stake)
                for addr, lp in self.lps.items()
                if lp.active and lp.stake > 0
            ]
            lp_deltas = split_pro_rata(user_pool - win_amount, staked)
            for addr, delta in lp_deltas.items():
                lp = self.lps[addr]
                lp.principal += delta
                lp.stake += delta
                if lp.principal == 0:
                    del self.lps[addr]
            self.lp_pool_total = sum(lp.principal for lp in self.lps.values())
            self.users[winner].winnings_claimable += win_amount

        for addr in self.round_entrants:
            user = self.users[addr]
            user.tickets_purchased_total_bps = 0
            user.active = False
        self.round_entrants = []

        now = self._now()
        result = RoundResult(
            round_number=self.round_number,
            request_id=request_id,
            random_value=random_value,
            winner=winner,
            win_amount=win_amount,
            used_fallback=used_fallback,
            user_pool_total=user_pool,
            total_ticket_weight=total_weight,
            winning_ticket=winning_ticket,
            entrants=tuple(ranges),
            lp_stake_total=stake_total,
            lp_deltas=lp_deltas,
            settled_at=now,
        )

        self.user_pool_total = 0
        self.lp_stake_total = 0
        self.last_winner_address = winner
        self.last_win_amount = win_amount
        self.last_jackpot_end_time = now
        self.pending_randomness_request_id = None
        self.round_number += 1
        self.jackpot_lock = False
        self.phase = RoundPhase.OPEN

        log.info(
            "Round %d settled: winner=%s amount=%d fallback=%s",
            result.round_number,
            winner,
            win_amount,
            used_fallback,
        )
        return result

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    def withdraw_winnings(self, caller: str) -> int:
        with self._mutex:
            user = self.users.get(caller)
            amount = user.winnings_claimable if user else 0
            if amount == 0:
                raise NothingToWithdrawError("No winnings to withdraw")
            self.token.transfer(self.address, caller, amount)
            user.winnings_claimable = 0
            log.info("%s withdrew winnings %d", caller, amount)
            return amount

    def withdraw_referral_fees(self, caller: str) -> int:
        with self._mutex:
            amount = self.referral_fees.get(caller, 0)
            if amount == 0:
                raise NothingToWithdrawError("No referral fees to withdraw")
            self.token.transfer(self.address, caller, amount)
            del self.referral_fees[caller]
            log.info("%s withdrew referral fees %d", caller, amount)
            return amount

    def withdraw_protocol_fees(self) -> int:
        with self._mutex:
            to = self.config.protocol_fee_address
            if not to or to == ZERO_ADDRESS:
                raise ValidationError("Protocol fee address not set")
            amount = self.protocol_fees_claimable
            if amount == 0:
                raise NothingToWithdrawError("No protocol fees to withdraw")
            self.token.transfer(self.address, to, amount)
            self.protocol_fees_claimable = 0
            return amount

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def lps_info(self, address: str) -> LiquidityProvider:
        with self._mutex:
            lp = self.lps.get(address)
            return LiquidityProvider(**vars(lp)) if lp else LiquidityProvider()

    def users_info(self, address: str) -> User:
        with self._mutex:
            user = self.users.get(address)
            return User(**vars(user)) if user else User()

    def referral_fees_claimable(self, address: str) -> int:
        with self._mutex:
            return self.referral_fees.get(address, 0)

    def total_liabilities(self) -> int:
        """Tokens the jackpot owes to someone; equals its token balance when solvent."""
        with self._mutex:
            return (
                self.lp_pool_total
                + self.user_pool_total
                + sum(u.winnings_claimable for u in self.users.values())
                + sum(self.referral_fees.values())
                + self.protocol_fees_claimable
            )

    def status(self, now: Optional[int] = None) -> JackpotStatus:
        with self._mutex:
            now = self._now() if now is None else now
            next_time = self.last_jackpot_end_time + self.config.round_duration_in_seconds
            return JackpotStatus(
                jackpot_lock=self.jackpot_lock,
                phase=self.phase,
                last_jackpot_end_time=self.last_jackpot_end_time,
                next_jackpot_time=next_time,
                can_run=(not self.jackpot_lock) and now >= next_time,
                seconds_remaining=max(0, next_time - now),
            )
