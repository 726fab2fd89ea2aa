import pytest

from base_jackpot.config import JackpotConfig
from base_jackpot.entropy import MockEntropyProvider
from base_jackpot.jackpot import BaseJackpot
from base_jackpot.token import InMemoryToken

TOKEN = 10**6
ROUND_DURATION = 60 * 60 * 24
JACKPOT = "jackpot"
ACCOUNTS = ["lp1", "lp2", "lp3", "user1", "user2", "user3", "user4"]
FUNDING = 50_000 * TOKEN


class FakeClock:
    def __init__(self, start: int = 1_700_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def token():
    t = InMemoryToken()
    for account in ACCOUNTS:
        t.mint(account, FUNDING)
        t.approve(account, JACKPOT, 2**256 - 1)
    return t


@pytest.fixture
def entropy():
    return MockEntropyProvider()


@pytest.fixture
def config():
    return JackpotConfig(
        ticket_price=10 * TOKEN,
        fee_bps=1000,
        referral_fee_bps=500,
        round_duration_in_seconds=ROUND_DURATION,
        min_lp_deposit=1_000 * TOKEN,
        lp_limit=5,
        user_limit=1000,
        allow_purchasing=True,
        fallback_winner="fallback",
        protocol_fee_address="protocol",
    )


@pytest.fixture
def jackpot(token, entropy, config, clock):
    return BaseJackpot(token=token, entropy=entropy, config=config, address=JACKPOT, clock=clock)


def run_round(jackpot, entropy, clock, random_value, seed="0x01"):
    clock.advance(ROUND_DURATION + 1)
    request_id = jackpot.run_jackpot(seed, entropy.get_fee())
    return entropy.trigger_callback(request_id, random_value)
