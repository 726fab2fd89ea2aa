import pytest

from base_jackpot.errors import JackpotLockedError, TokenTransferError, ValidationError

from conftest import FUNDING, JACKPOT, ROUND_DURATION, TOKEN


def test_lp_deposit_records_principal_and_risk(jackpot, token):
    jackpot.lp_deposit("lp1", 50, 10_000 * TOKEN)

    info = jackpot.lps_info("lp1")
    assert info.principal == 10_000 * TOKEN
    assert info.risk_percentage == 50
    assert info.active is True
    assert jackpot.lp_pool_total == 10_000 * TOKEN
    assert token.balance_of(JACKPOT) == 10_000 * TOKEN


def test_min_deposit_boundary(jackpot):
    with pytest.raises(ValidationError, match="Deposit amount too small"):
        jackpot.lp_deposit("lp1", 50, 1_000 * TOKEN - 1)
    jackpot.lp_deposit("lp1", 50, 1_000 * TOKEN)
    assert jackpot.lp_pool_total == 1_000 * TOKEN


@pytest.mark.parametrize("risk", [0, 101, -5])
def test_deposit_rejects_risk_out_of_range(jackpot, risk):
    with pytest.raises(ValidationError, match="Invalid risk percentage"):
        jackpot.lp_deposit("lp1", risk, 10_000 * TOKEN)
    assert jackpot.lp_pool_total == 0


def test_pool_cap(jackpot):
    jackpot.config.set_lp_pool_cap(12_000 * TOKEN)
    jackpot.lp_deposit("lp1", 50, 10_000 * TOKEN)
    with pytest.raises(ValidationError, match="cap"):
        jackpot.lp_deposit("lp2", 50, 5_000 * TOKEN)
    jackpot.lp_deposit("lp2", 50, 2_000 * TOKEN)
    assert jackpot.lp_pool_total == 12_000 * TOKEN


def test_lp_limit_counts_distinct_active_lps(jackpot):
    jackpot.config.set_lp_limit(1)
    jackpot.lp_deposit("lp1", 50, 10_000 * TOKEN)
    with pytest.raises(ValidationError, match="LP limit"):
        jackpot.lp_deposit("lp2", 50, 10_000 * TOKEN)
    # Topping up an existing position is not a new LP.
    jackpot.lp_deposit("lp1", 70, 1_000 * TOKEN)
    assert jackpot.lps_info("lp1").principal == 11_000 * TOKEN
    assert jackpot.lps_info("lp1").risk_percentage == 70

    jackpot.withdraw_all_lp("lp1")
    jackpot.lp_deposit("lp2", 50, 10_000 * TOKEN)
    assert jackpot.active_lp_count() == 1


def test_withdraw_principal(jackpot, token):
    jackpot.lp_deposit("lp1", 50, 10_000 * TOKEN)
    jackpot.lp_withdraw_principal("lp1", 4_000 * TOKEN)
    assert jackpot.lps_info("lp1").principal == 6_000 * TOKEN
    assert jackpot.lps_info("lp1").active is True

    jackpot.lp_withdraw_principal("lp1", 6_000 * TOKEN)
    info = jackpot.lps_info("lp1")
    assert info.principal == 0
    assert info.active is False
    assert jackpot.lp_pool_total == 0
    assert token.balance_of("lp1") == FUNDING


def test_withdraw_rejects_more_than_principal(jackpot):
    jackpot.lp_deposit("lp1", 50, 10_000 * TOKEN)
    with pytest.raises(ValidationError, match="Insufficient principal"):
        jackpot.lp_withdraw_principal("lp1", 10_001 * TOKEN)
    with pytest.raises(ValidationError):
        jackpot.lp_withdraw_principal("lp2", 1)
    assert jackpot.lp_pool_total == 10_000 * TOKEN


def test_withdraw_all_returns_everything(jackpot, token):
    jackpot.lp_deposit("lp1", 50, 10_000 * TOKEN)
    assert jackpot.withdraw_all_lp("lp1") == 10_000 * TOKEN
    assert token.balance_of("lp1") == FUNDING
    assert jackpot.lps_info("lp1").active is False


def test_adjust_risk_does_not_move_funds(jackpot):
    jackpot.lp_deposit("lp1", 50, 10_000 * TOKEN)
    jackpot.lp_adjust_risk_percentage("lp1", 75)
    info = jackpot.lps_info("lp1")
    assert info.risk_percentage == 75
    assert info.principal == 10_000 * TOKEN
    assert info.stake == 0

    with pytest.raises(ValidationError):
        jackpot.lp_adjust_risk_percentage("lp1", 0)
    with pytest.raises(ValidationError):
        jackpot.lp_adjust_risk_percentage("lp2", 50)


def test_pool_total_tracks_sum_of_principal(jackpot):
    jackpot.lp_deposit("lp1", 50, 10_000 * TOKEN)
    jackpot.lp_deposit("lp2", 20, 3_000 * TOKEN)
    jackpot.lp_withdraw_principal("lp1", 2_500 * TOKEN)
    jackpot.lp_deposit("lp2", 20, 1_000 * TOKEN)
    jackpot.withdraw_all_lp("lp2")
    jackpot.lp_deposit("lp2", 90, 5_000 * TOKEN)

    assert jackpot.lp_pool_total == sum(
        jackpot.lps_info(a).principal for a in ("lp1", "lp2")
    )
    assert jackpot.lp_pool_total == 12_500 * TOKEN


def test_failed_transfer_leaves_no_trace(jackpot, token):
    token.mint("stranger", 5_000 * TOKEN)  # never approved
    with pytest.raises(TokenTransferError):
        jackpot.lp_deposit("stranger", 50, 5_000 * TOKEN)
    assert jackpot.lp_pool_total == 0
    assert jackpot.lps_info("stranger").active is False


def test_lp_operations_rejected_while_locked(jackpot, clock):
    jackpot.lp_deposit("lp1", 50, 10_000 * TOKEN)
    clock.advance(ROUND_DURATION + 1)
    jackpot.run_jackpot("0x01", 0)

    with pytest.raises(JackpotLockedError, match="Jackpot is locked"):
        jackpot.lp_deposit("lp2", 50, 10_000 * TOKEN)
    with pytest.raises(JackpotLockedError):
        jackpot.lp_withdraw_principal("lp1", 1_000 * TOKEN)
    with pytest.raises(JackpotLockedError):
        jackpot.withdraw_all_lp("lp1")
    with pytest.raises(JackpotLockedError):
        jackpot.lp_adjust_risk_percentage("lp1", 10)
    assert jackpot.lps_info("lp1").principal == 10_000 * TOKEN
