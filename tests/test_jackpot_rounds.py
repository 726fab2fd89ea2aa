import pytest

from base_jackpot.errors import (
    EntropyError,
    JackpotLockedError,
    RoundNotFinishedError,
    StaleCallbackError,
)
from base_jackpot.jackpot import RoundPhase

from conftest import JACKPOT, ROUND_DURATION, TOKEN, run_round

W = 9_000 * TOKEN  # ticket weight of one whole token at a 10% fee


def _fund_round(jackpot):
    jackpot.lp_deposit("lp1", 50, 10_000 * TOKEN)
    jackpot.purchase_tickets("user1", None, 1_000 * TOKEN)
    jackpot.purchase_tickets("user2", None, 1_000 * TOKEN)


def test_run_jackpot_locks_and_reserves_stake(jackpot, entropy, clock):
    _fund_round(jackpot)
    clock.advance(ROUND_DURATION + 1)
    request_id = jackpot.run_jackpot("0x01", 0)

    assert jackpot.jackpot_lock is True
    assert jackpot.phase is RoundPhase.AWAITING_RANDOMNESS
    assert jackpot.pending_randomness_request_id == request_id
    assert jackpot.lps_info("lp1").stake == 5_000 * TOKEN
    assert jackpot.lp_stake_total == 5_000 * TOKEN
    assert entropy.requests[request_id].seed == "0x01"


def test_run_before_window_elapses(jackpot, clock):
    clock.advance(ROUND_DURATION - 1)
    with pytest.raises(RoundNotFinishedError):
        jackpot.run_jackpot("0x01", 0)
    assert jackpot.jackpot_lock is False

    clock.advance(1)
    jackpot.run_jackpot("0x01", 0)
    assert jackpot.jackpot_lock is True


def test_second_run_while_locked_fails_without_side_effects(jackpot, entropy, clock):
    _fund_round(jackpot)
    clock.advance(ROUND_DURATION + 1)
    request_id = jackpot.run_jackpot("0x01", 0)

    with pytest.raises(JackpotLockedError, match="Jackpot is locked"):
        jackpot.run_jackpot("0x02", 0)
    assert jackpot.pending_randomness_request_id == request_id
    assert len(entropy.requests) == 1


def test_entropy_failure_rolls_back_lock(jackpot, entropy, clock):
    entropy.fee = 100
    _fund_round(jackpot)
    clock.advance(ROUND_DURATION + 1)

    with pytest.raises(EntropyError, match="Insufficient fee"):
        jackpot.run_jackpot("0x01", 10)
    assert jackpot.jackpot_lock is False
    assert jackpot.phase is RoundPhase.OPEN
    assert jackpot.lps_info("lp1").stake == 0
    assert jackpot.pending_randomness_request_id is None

    jackpot.run_jackpot("0x01", 100)
    assert jackpot.jackpot_lock is True


def test_settlement_resets_tickets_and_unlocks(jackpot, entropy, clock):
    _fund_round(jackpot)
    result = run_round(jackpot, entropy, clock, 0)

    assert jackpot.jackpot_lock is False
    assert jackpot.phase is RoundPhase.OPEN
    assert jackpot.last_jackpot_end_time == clock.now
    assert jackpot.last_winner_address == result.winner == "user1"
    assert jackpot.user_pool_total == 0
    assert jackpot.round_entrants == []
    for user in ("user1", "user2"):
        info = jackpot.users_info(user)
        assert info.tickets_purchased_total_bps == 0
        assert info.active is False


def test_winner_is_weighted_by_ticket_share(jackpot, entropy, clock):
    jackpot.lp_deposit("lp1", 50, 10_000 * TOKEN)
    jackpot.purchase_tickets("user1", None, 1_000 * TOKEN)
    jackpot.purchase_tickets("user2", None, 3_000 * TOKEN)
    # user1 holds [0, 1000W), user2 holds [1000W, 4000W)
    total = 4_000 * W

    assert run_round(jackpot, entropy, clock, 1_000 * W - 1).winner == "user1"

    jackpot.purchase_tickets("user1", None, 1_000 * TOKEN)
    jackpot.purchase_tickets("user2", None, 3_000 * TOKEN)
    result = run_round(jackpot, entropy, clock, total + 1_000 * W)
    assert result.winner == "user2"
    assert result.winning_ticket == 1_000 * W


def test_loss_is_drawn_from_lp_stake(jackpot, entropy, clock, token):
    jackpot.lp_deposit("lp1", 50, 10_000 * TOKEN)
    jackpot.purchase_tickets("user1", None, 1_000 * TOKEN)

    result = run_round(jackpot, entropy, clock, 0)

    # Prize is the reserved stake; the 900 net ticket revenue offsets it.
    assert result.win_amount == 5_000 * TOKEN
    assert result.lp_deltas == {"lp1": -4_100 * TOKEN}
    assert jackpot.users_info("user1").winnings_claimable == 5_000 * TOKEN
    assert jackpot.lps_info("lp1").principal == 5_900 * TOKEN
    assert jackpot.lps_info("lp1").stake == 900 * TOKEN
    assert jackpot.lp_pool_total == 5_900 * TOKEN
    assert token.balance_of(JACKPOT) == jackpot.total_liabilities()


def test_profit_when_ticket_revenue_exceeds_stake(jackpot, entropy, clock, token):
    jackpot.lp_deposit("lp1", 10, 10_000 * TOKEN)
    jackpot.purchase_tickets("user1", None, 2_000 * TOKEN)

    result = run_round(jackpot, entropy, clock, 0)

    assert result.win_amount == 1_000 * TOKEN
    assert jackpot.lps_info("lp1").principal == 10_800 * TOKEN
    assert jackpot.lp_pool_total == 10_800 * TOKEN
    assert token.balance_of(JACKPOT) == jackpot.total_liabilities()


def test_profit_and_loss_split_by_stake(jackpot, entropy, clock):
    jackpot.lp_deposit("lp1", 100, 3_000 * TOKEN)  # stake 3000
    jackpot.lp_deposit("lp2", 10, 10_000 * TOKEN)  # stake 1000
    jackpot.purchase_tickets("user1", None, 2_000 * TOKEN)  # net 1800

    result = run_round(jackpot, entropy, clock, 0)

    assert result.lp_stake_total == 4_000 * TOKEN
    assert result.lp_deltas == {"lp1": -1_650 * TOKEN, "lp2": -550 * TOKEN}
    assert jackpot.lp_pool_total == 10_800 * TOKEN


def test_uneven_split_leftover_goes_to_earliest_lps_on_ties(jackpot, entropy, clock, token):
    for lp in ("lp1", "lp2", "lp3"):
        jackpot.lp_deposit(lp, 100, 1_000 * TOKEN)  # equal stakes of 1000
    jackpot.purchase_tickets("user1", None, 1_000 * TOKEN + 4)  # net 900_000_004

    result = run_round(jackpot, entropy, clock, 0)

    # delta = 900_000_004 - 3_000_000_000 = -2_099_999_996, i.e. 699_999_998
    # each plus two leftover units; equal remainders go in deposit order.
    assert result.lp_deltas == {
        "lp1": -699_999_999,
        "lp2": -699_999_999,
        "lp3": -699_999_998,
    }
    assert sum(result.lp_deltas.values()) == result.user_pool_total - result.win_amount
    assert jackpot.lps_info("lp3").principal == 1_000 * TOKEN - 699_999_998
    assert token.balance_of(JACKPOT) == jackpot.total_liabilities()


def test_no_lp_backing_pays_out_the_pot(jackpot, entropy, clock):
    jackpot.purchase_tickets("user1", None, 1_000 * TOKEN)
    result = run_round(jackpot, entropy, clock, 0)
    assert result.win_amount == 900 * TOKEN
    assert result.lp_deltas == {}
    assert jackpot.users_info("user1").winnings_claimable == 900 * TOKEN


def test_no_tickets_uses_fallback_winner(jackpot, entropy, clock):
    jackpot.lp_deposit("lp1", 50, 10_000 * TOKEN)
    result = run_round(jackpot, entropy, clock, 12345)

    assert result.used_fallback is True
    assert jackpot.last_winner_address == "fallback"
    assert result.win_amount == 0
    assert jackpot.lps_info("lp1").principal == 10_000 * TOKEN
    assert jackpot.users_info("fallback").winnings_claimable == 0
    assert jackpot.jackpot_lock is False


def test_fallback_round_releases_reserved_stake(jackpot, entropy, clock):
    jackpot.lp_deposit("lp1", 50, 10_000 * TOKEN)
    jackpot.lp_deposit("lp2", 20, 5_000 * TOKEN)
    clock.advance(ROUND_DURATION + 1)
    request_id = jackpot.run_jackpot("0x01", 0)
    assert jackpot.lps_info("lp1").stake == 5_000 * TOKEN
    assert jackpot.lps_info("lp2").stake == 1_000 * TOKEN

    entropy.trigger_callback(request_id, 7)

    assert jackpot.lp_stake_total == 0
    assert jackpot.lps_info("lp1").stake == 0
    assert jackpot.lps_info("lp2").stake == 0
    assert jackpot.lps_info("lp1").principal == 10_000 * TOKEN


def test_stale_and_duplicate_callbacks_are_rejected(jackpot, entropy, clock):
    _fund_round(jackpot)
    clock.advance(ROUND_DURATION + 1)
    request_id = jackpot.run_jackpot("0x01", 0)

    with pytest.raises(StaleCallbackError):
        entropy.trigger_callback(request_id + 1, 0)
    assert jackpot.jackpot_lock is True

    entropy.trigger_callback(request_id, 0)
    winnings = jackpot.users_info("user1").winnings_claimable
    assert winnings == 5_000 * TOKEN

    with pytest.raises(StaleCallbackError):
        entropy.trigger_callback(request_id, 0)
    assert jackpot.users_info("user1").winnings_claimable == winnings


def test_callback_without_pending_request(jackpot, entropy):
    with pytest.raises(StaleCallbackError):
        entropy.trigger_callback(1, 0)


def test_winnings_claimable_while_next_round_locked(jackpot, entropy, clock, token):
    _fund_round(jackpot)
    run_round(jackpot, entropy, clock, 0)

    clock.advance(ROUND_DURATION + 1)
    jackpot.run_jackpot("0x02", 0)
    assert jackpot.jackpot_lock is True

    before = token.balance_of("user1")
    assert jackpot.withdraw_winnings("user1") == 5_000 * TOKEN
    assert token.balance_of("user1") == before + 5_000 * TOKEN
    assert jackpot.users_info("user1").winnings_claimable == 0


def test_risk_change_applies_at_next_round(jackpot, entropy, clock):
    jackpot.lp_deposit("lp1", 50, 10_000 * TOKEN)
    jackpot.lp_adjust_risk_percentage("lp1", 75)
    jackpot.purchase_tickets("user1", None, 1_000 * TOKEN)

    result = run_round(jackpot, entropy, clock, 0)
    assert result.lp_stake_total == 7_500 * TOKEN


def test_status_reports_window(jackpot, clock):
    status = jackpot.status()
    assert status.can_run is False
    assert status.seconds_remaining == ROUND_DURATION

    clock.advance(ROUND_DURATION)
    status = jackpot.status()
    assert status.can_run is True
    assert status.seconds_remaining == 0

    jackpot.run_jackpot("0x01", 0)
    status = jackpot.status()
    assert status.jackpot_lock is True
    assert status.can_run is False
