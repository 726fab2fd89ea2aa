from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigError
from .project_constants import (
    BPS_DENOMINATOR,
    DEFAULT_ENTROPY_FEE,
    DEFAULT_FEE_BPS,
    DEFAULT_LP_LIMIT,
    DEFAULT_MIN_LP_DEPOSIT,
    DEFAULT_REFERRAL_FEE_BPS,
    DEFAULT_ROUND_DURATION,
    DEFAULT_STATE_FILE,
    DEFAULT_TICKET_PRICE_RAW,
    DEFAULT_USER_LIMIT,
    TOKEN_DECIMALS,
    ZERO_ADDRESS,
)


@dataclass
class JackpotConfig:
    """
    Operator-owned parameters. The ledger only reads these; every change
    goes through a setter so the fee invariant can't be broken.
    """

    ticket_price: int = DEFAULT_TICKET_PRICE_RAW * (10**TOKEN_DECIMALS)
    fee_bps: int = DEFAULT_FEE_BPS
    referral_fee_bps: int = DEFAULT_REFERRAL_FEE_BPS
    round_duration_in_seconds: int = DEFAULT_ROUND_DURATION
    min_lp_deposit: int = DEFAULT_MIN_LP_DEPOSIT
    lp_pool_cap: Optional[int] = None  # None = uncapped
    lp_limit: int = DEFAULT_LP_LIMIT
    user_limit: int = DEFAULT_USER_LIMIT
    allow_purchasing: bool = True
    fallback_winner: str = ZERO_ADDRESS
    protocol_fee_address: str = ZERO_ADDRESS

    def __post_init__(self) -> None:
        if not 0 <= self.fee_bps <= BPS_DENOMINATOR:
            raise ConfigError(f"Fee bps out of range: {self.fee_bps}")
        if self.referral_fee_bps > self.fee_bps:
            raise ConfigError("Referral bps should not exceed fee bps")
        if self.round_duration_in_seconds <= 0:
            raise ConfigError("Round duration must be positive")

    def set_ticket_price(self, raw_price: int) -> None:
        """Price is given in whole tokens, stored in raw units."""
        if raw_price <= 0:
            raise ConfigError("Ticket price must be positive")
        self.ticket_price = raw_price * (10**TOKEN_DECIMALS)

    def set_fee_bps(self, fee_bps: int) -> None:
        if not 0 <= fee_bps <= BPS_DENOMINATOR:
            raise ConfigError(f"Fee bps out of range: {fee_bps}")
        if fee_bps < self.referral_fee_bps:
            raise ConfigError("Fee bps should not be below referral bps")
        self.fee_bps = fee_bps

    def set_referral_fee_bps(self, referral_fee_bps: int) -> None:
        if referral_fee_bps < 0:
            raise ConfigError("Referral bps must not be negative")
        if referral_fee_bps > self.fee_bps:
            raise ConfigError("Referral bps should not exceed fee bps")
        self.referral_fee_bps = referral_fee_bps

    def set_round_duration_in_seconds(self, seconds: int) -> None:
        if seconds <= 0:
            raise ConfigError("Round duration must be positive")
        self.round_duration_in_seconds = seconds

    def set_min_lp_deposit(self, amount: int) -> None:
        if amount < 0:
            raise ConfigError("Minimum LP deposit must not be negative")
        self.min_lp_deposit = amount

    def set_lp_pool_cap(self, cap: Optional[int]) -> None:
        if cap is not None and cap <= 0:
            raise ConfigError("LP pool cap must be positive")
        self.lp_pool_cap = cap

    def set_lp_limit(self, limit: int) -> None:
        if limit <= 0:
            raise ConfigError("LP limit must be positive")
        self.lp_limit = limit

    def set_user_limit(self, limit: int) -> None:
        if limit <= 0:
            raise ConfigError("User limit must be positive")
        self.user_limit = limit

    def set_allow_purchasing(self, allow: bool) -> None:
        self.allow_purchasing = bool(allow)

    def set_fallback_winner(self, address: str) -> None:
        self.fallback_winner = address

    def set_protocol_fee_address(self, address: str) -> None:
        self.protocol_fee_address = address


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    state_file: str = DEFAULT_STATE_FILE
    rpc_url: Optional[str] = None
    entropy_fee: int = DEFAULT_ENTROPY_FEE
    jackpot: JackpotConfig = field(default_factory=JackpotConfig)

    @staticmethod
    def from_env(
        rpc_url_override: str | None = None,
        state_file_override: str | None = None,
    ) -> "Settings":
        load_dotenv()

        rpc_url = rpc_url_override or os.getenv("RPC_URL", "").strip() or None
        state_file = (
            state_file_override
            or os.getenv("JACKPOT_STATE_FILE", "").strip()
            or DEFAULT_STATE_FILE
        )

        jackpot = JackpotConfig(
            fee_bps=_env_int("JACKPOT_FEE_BPS", DEFAULT_FEE_BPS),
            referral_fee_bps=_env_int(
                "JACKPOT_REFERRAL_FEE_BPS", DEFAULT_REFERRAL_FEE_BPS
            ),
            round_duration_in_seconds=_env_int(
                "JACKPOT_ROUND_DURATION", DEFAULT_ROUND_DURATION
            ),
            min_lp_deposit=_env_int("JACKPOT_MIN_LP_DEPOSIT", DEFAULT_MIN_LP_DEPOSIT),
            lp_pool_cap=_env_int("JACKPOT_LP_POOL_CAP", None),
            lp_limit=_env_int("JACKPOT_LP_LIMIT", DEFAULT_LP_LIMIT),
            user_limit=_env_int("JACKPOT_USER_LIMIT", DEFAULT_USER_LIMIT),
            fallback_winner=os.getenv("JACKPOT_FALLBACK_WINNER", "").strip()
            or ZERO_ADDRESS,
            protocol_fee_address=os.getenv("JACKPOT_PROTOCOL_FEE_ADDRESS", "").strip()
            or ZERO_ADDRESS,
        )
        # Same scaling as the on-chain setter: whole tokens in, raw units stored.
        jackpot.set_ticket_price(
            _env_int("JACKPOT_TICKET_PRICE", DEFAULT_TICKET_PRICE_RAW)
        )

        return Settings(
            state_file=state_file,
            rpc_url=rpc_url,
            entropy_fee=_env_int("JACKPOT_ENTROPY_FEE", DEFAULT_ENTROPY_FEE),
            jackpot=jackpot,
        )
