from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Dict, Protocol

from .errors import TokenTransferError

log = logging.getLogger(__name__)


class Token(Protocol):
    """What the jackpot needs from the pool token. Failures raise TokenTransferError."""

    def balance_of(self, address: str) -> int: ...

    def transfer(self, sender: str, to: str, amount: int) -> None: ...

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> None: ...


class InMemoryToken:
    """
    ERC20-shaped balance sheet. Transfers are all-or-nothing: checks run
    before any balance moves.
    """

    def __init__(self, symbol: str = "USDC") -> None:
        self.symbol = symbol
        self.balances: Dict[str, int] = defaultdict(int)
        self.allowances: Dict[str, Dict[str, int]] = defaultdict(dict)
        self.total_supply = 0

    def balance_of(self, address: str) -> int:
        return self.balances.get(address, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get(owner, {}).get(spender, 0)

    def mint(self, to: str, amount: int) -> None:
        if amount <= 0:
            raise TokenTransferError("Mint amount must be positive")
        self.balances[to] += amount
        self.total_supply += amount
        log.debug("Minted %d %s to %s", amount, self.symbol, to)

    def approve(self, owner: str, spender: str, amount: int) -> None:
        if amount < 0:
            raise TokenTransferError("Allowance must not be negative")
        self.allowances[owner][spender] = amount

    def transfer(self, sender: str, to: str, amount: int) -> None:
        self._check_amount(amount)
        if self.balance_of(sender) < amount:
            raise TokenTransferError("ERC20: transfer amount exceeds balance")
        self._move(sender, to, amount)

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> None:
        self._check_amount(amount)
        allowed = self.allowance(owner, spender)
        if allowed < amount:
            raise TokenTransferError("ERC20: insufficient allowance")
        if self.balance_of(owner) < amount:
            raise TokenTransferError("ERC20: transfer amount exceeds balance")
        self.allowances[owner][spender] = allowed - amount
        self._move(owner, to, amount)

    def _check_amount(self, amount: int) -> None:
        if amount < 0:
            raise TokenTransferError("Transfer amount must not be negative")

    def _move(self, sender: str, to: str, amount: int) -> None:
        self.balances[sender] -= amount
        self.balances[to] += amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "total_supply": str(self.total_supply),
            "balances": {a: str(b) for a, b in self.balances.items() if b},
            "allowances": {
                owner: {s: str(v) for s, v in spenders.items()}
                for owner, spenders in self.allowances.items()
                if spenders
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InMemoryToken":
        token = cls(symbol=data.get("symbol", "USDC"))
        token.total_supply = int(data.get("total_supply", 0))
        for addr, bal in data.get("balances", {}).items():
            token.balances[addr] = int(bal)
        for owner, spenders in data.get("allowances", {}).items():
            token.allowances[owner] = {s: int(v) for s, v in spenders.items()}
        return token
