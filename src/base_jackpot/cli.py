from __future__ import annotations

import argparse
import logging
import os
import secrets
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from .config import Settings
from .draw import to_tokens
from .entropy import BlockhashEntropyProvider
from .errors import JackpotError
from .jackpot import BaseJackpot
from .rpc import RpcClient, benchmark_rpc, load_blockhash_from_block_feed_file
from .state import load_state, save_state
from .token import InMemoryToken
from .verify import build_audit, verify_audit, write_audit


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def _settings(args: argparse.Namespace) -> Settings:
    return Settings.from_env(
        rpc_url_override=args.rpc_url, state_file_override=args.state
    )


def _load(args: argparse.Namespace) -> Tuple[Settings, BaseJackpot, InMemoryToken]:
    settings = _settings(args)
    jackpot, token = load_state(settings.state_file)
    return settings, jackpot, token


def _fmt_time(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def cmd_init(args: argparse.Namespace) -> int:
    settings = _settings(args)
    log = logging.getLogger("init")
    if os.path.exists(settings.state_file) and not args.force:
        raise SystemExit(
            f"{settings.state_file} already exists. Pass --force to start over."
        )

    token = InMemoryToken(symbol=args.symbol)
    entropy = BlockhashEntropyProvider(fee=settings.entropy_fee)
    jackpot = BaseJackpot(
        token=token, entropy=entropy, config=settings.jackpot, address=args.address
    )
    save_state(settings.state_file, jackpot, token)

    cfg = jackpot.config
    log.info("Jackpot address   : %s", jackpot.address)
    log.info("Ticket price      : %s", to_tokens(cfg.ticket_price))
    log.info("Fee / referral bps: %d / %d", cfg.fee_bps, cfg.referral_fee_bps)
    log.info("Round duration    : %ds", cfg.round_duration_in_seconds)
    print(f"Initialized jackpot state at {settings.state_file}")
    return 0


def cmd_mint(args: argparse.Namespace) -> int:
    settings, jackpot, token = _load(args)
    token.mint(args.to, args.amount)
    save_state(settings.state_file, jackpot, token)
    print(f"Minted {to_tokens(args.amount)} {token.symbol} to {args.to}")
    return 0


def cmd_approve(args: argparse.Namespace) -> int:
    settings, jackpot, token = _load(args)
    token.approve(args.sender, jackpot.address, args.amount)
    save_state(settings.state_file, jackpot, token)
    print(f"{args.sender} approved {to_tokens(args.amount)} for {jackpot.address}")
    return 0


def cmd_deposit_lp(args: argparse.Namespace) -> int:
    settings, jackpot, token = _load(args)
    jackpot.lp_deposit(args.sender, args.risk, args.amount)
    save_state(settings.state_file, jackpot, token)
    print(f"Deposited {to_tokens(args.amount)} as LP with {args.risk}% risk")
    return 0


def cmd_withdraw_lp(args: argparse.Namespace) -> int:
    settings, jackpot, token = _load(args)
    if args.amount is None:
        amount = jackpot.withdraw_all_lp(args.sender)
    else:
        jackpot.lp_withdraw_principal(args.sender, args.amount)
        amount = args.amount
    save_state(settings.state_file, jackpot, token)
    print(f"Withdrew {to_tokens(amount)} LP principal")
    return 0


def cmd_adjust_risk(args: argparse.Namespace) -> int:
    settings, jackpot, token = _load(args)
    jackpot.lp_adjust_risk_percentage(args.sender, args.risk)
    save_state(settings.state_file, jackpot, token)
    print(f"Risk for {args.sender} set to {args.risk}%")
    return 0


def cmd_buy_ticket(args: argparse.Namespace) -> int:
    settings, jackpot, token = _load(args)
    recipient = args.recipient or args.sender
    weight = jackpot.purchase_tickets(args.sender, args.referrer, args.amount, recipient)
    save_state(settings.state_file, jackpot, token)
    print(f"Purchased ticket with {to_tokens(args.amount)} tokens for {recipient}")
    print(f"Ticket weight: {weight} bps")
    if args.referrer:
        print(f"Referrer     : {args.referrer}")
    return 0


def cmd_run_jackpot(args: argparse.Namespace) -> int:
    settings, jackpot, token = _load(args)
    status = jackpot.status()

    print(f"Last jackpot time     : {_fmt_time(status.last_jackpot_end_time)}")
    print(f"Next jackpot available: {_fmt_time(status.next_jackpot_time)}")
    if not status.can_run:
        if status.jackpot_lock:
            print("Jackpot is currently in progress. Please wait for it to complete.")
        else:
            print(f"Jackpot cannot be run yet. Time remaining: {status.seconds_remaining / 60:.1f} minutes")
        return 1

    seed = args.seed or "0x" + secrets.token_hex(32)
    fee = args.fee if args.fee is not None else jackpot.entropy.get_fee()
    print(f"Using random number: {seed}")

    entropy = jackpot.entropy
    if not isinstance(entropy, BlockhashEntropyProvider):
        raise SystemExit("State is not backed by a blockhash entropy provider.")
    if not settings.rpc_url:
        raise SystemExit("Missing RPC_URL (or --rpc-url); needed to pin the target block.")
    rpc = RpcClient(settings.rpc_url, timeout_s=args.timeout)
    entropy.block_source = rpc.get_block_number
    try:
        request_id = jackpot.run_jackpot(seed, fee)
    finally:
        entropy.block_source = None
        rpc.close()
    save_state(settings.state_file, jackpot, token)
    target = entropy.requests[request_id].target_block
    print(f"Round {jackpot.round_number} locked; entropy request id {request_id}")
    print(f"Target block          : {target}")
    print("Run `base-jackpot fulfill` once the target block is finalized.")
    return 0


def cmd_fulfill(args: argparse.Namespace) -> int:
    settings, jackpot, token = _load(args)
    log = logging.getLogger("fulfill")

    request_id = args.request_id or jackpot.pending_randomness_request_id
    if request_id is None:
        raise SystemExit("No pending entropy request.")

    entropy = jackpot.entropy
    if not isinstance(entropy, BlockhashEntropyProvider):
        raise SystemExit("State is not backed by a blockhash entropy provider.")
    req = entropy.requests.get(request_id)
    if req is None or req.target_block is None:
        raise SystemExit(f"Entropy request {request_id} has no target block.")
    target = req.target_block

    if args.block_feed_file:
        blockhash = load_blockhash_from_block_feed_file(
            args.block_feed_file, block_hint=target, strict=True
        )
        source = f"file:{args.block_feed_file}"
    else:
        if not settings.rpc_url:
            raise SystemExit("Missing RPC_URL (or --rpc-url / --block-feed-file).")
        rpc = RpcClient(settings.rpc_url, timeout_s=args.timeout)
        try:
            head = rpc.get_block_number()
            if head < target:
                raise SystemExit(
                    f"Target block {target} not reached yet (head {head}). Try again later."
                )
            blockhash = rpc.get_blockhash(target)
            source = "rpc:eth_getBlockByNumber"
        finally:
            rpc.close()

    log.info("Target block: %d", target)
    log.info("Blockhash   : %s", blockhash)
    log.info("Hash source : %s", source)

    seed = req.seed
    result = entropy.fulfill(request_id, target, blockhash)
    save_state(settings.state_file, jackpot, token)

    audit = build_audit(result, seed=seed, blockhash=blockhash, block_number=target)
    write_audit(args.out, audit)

    print("========================================")
    print("JACKPOT ROUND SETTLED")
    print("========================================")
    print(f"Round         : {result.round_number}")
    print(f"Block         : {target}")
    print(f"Blockhash     : {blockhash}")
    print("----------------------------------------")
    print(f"Winner        : {result.winner}")
    print(f"Prize Amount  : {to_tokens(result.win_amount)}")
    if result.used_fallback:
        print("No tickets sold; fallback winner used.")
    for addr, delta in result.lp_deltas.items():
        print(f"LP {addr}: {'+' if delta >= 0 else ''}{to_tokens(delta)}")
    print("----------------------------------------")
    print(f"Wrote audit: {args.out}")
    return 0


def cmd_withdraw_winnings(args: argparse.Namespace) -> int:
    settings, jackpot, token = _load(args)
    amount = jackpot.withdraw_winnings(args.sender)
    save_state(settings.state_file, jackpot, token)
    print(f"Withdrew winnings: {to_tokens(amount)}")
    return 0


def cmd_withdraw_referral_fees(args: argparse.Namespace) -> int:
    settings, jackpot, token = _load(args)
    amount = jackpot.withdraw_referral_fees(args.sender)
    save_state(settings.state_file, jackpot, token)
    print(f"Withdrew referral fees: {to_tokens(amount)}")
    return 0


def cmd_withdraw_protocol_fees(args: argparse.Namespace) -> int:
    settings, jackpot, token = _load(args)
    amount = jackpot.withdraw_protocol_fees()
    save_state(settings.state_file, jackpot, token)
    print(f"Sent {to_tokens(amount)} protocol fees to {jackpot.config.protocol_fee_address}")
    return 0


def cmd_info(args: argparse.Namespace) -> int:
    _, jackpot, token = _load(args)
    cfg = jackpot.config
    print("=== Jackpot Information ===")
    print(f"Ticket Price      : {to_tokens(cfg.ticket_price)}")
    print(f"User Pool Total   : {to_tokens(jackpot.user_pool_total)}")
    print(f"LP Pool Total     : {to_tokens(jackpot.lp_pool_total)}")
    print(f"Last Winner       : {jackpot.last_winner_address}")
    print(f"Last Win Amount   : {to_tokens(jackpot.last_win_amount)}")
    print(f"Last Jackpot Time : {_fmt_time(jackpot.last_jackpot_end_time)}")
    print(f"Purchasing Allowed: {'Yes' if cfg.allow_purchasing else 'No'}")
    print(f"Referral Fees     : {to_tokens(jackpot.referral_fees_total)} (all time)")
    print(f"Token Balance     : {to_tokens(token.balance_of(jackpot.address))}")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    _, jackpot, _ = _load(args)
    status = jackpot.status()
    print("=== Jackpot Status ===")
    print(f"Jackpot Currently Running: {'Yes' if status.jackpot_lock else 'No'}")
    print(f"Phase                    : {status.phase.value}")
    print(f"Last Jackpot End Time    : {_fmt_time(status.last_jackpot_end_time)}")
    print(f"Next Jackpot Available   : {_fmt_time(status.next_jackpot_time)}")
    if status.can_run:
        print("Jackpot can be run now!")
    elif status.jackpot_lock:
        print("Jackpot is currently in progress. Please wait for it to complete.")
    else:
        remaining = status.seconds_remaining
        hours, rem = divmod(remaining, 3600)
        minutes, seconds = divmod(rem, 60)
        print(f"Time until next jackpot: {hours}h {minutes}m {seconds}s")
    return 0


def cmd_lp_info(args: argparse.Namespace) -> int:
    _, jackpot, _ = _load(args)
    lp = jackpot.lps_info(args.address)
    print(f"LP Info for {args.address}:")
    print(f"- Principal: {to_tokens(lp.principal)}")
    print(f"- Stake: {to_tokens(lp.stake)}")
    print(f"- Risk %: {lp.risk_percentage}")
    print(f"- Active: {lp.active}")
    return 0


def cmd_user_info(args: argparse.Namespace) -> int:
    _, jackpot, _ = _load(args)
    user = jackpot.users_info(args.address)
    print(f"User Info for {args.address}:")
    print(f"- Tickets: {user.tickets_purchased_total_bps}")
    print(f"- Winnings: {to_tokens(user.winnings_claimable)}")
    print(f"- Referral fees: {to_tokens(jackpot.referral_fees_claimable(args.address))}")
    print(f"- Active: {user.active}")
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    result = verify_audit(args.audit)
    print("AUDIT VERIFIED")
    print(f"Winner        : {result['winner']}")
    if result["used_fallback"]:
        print("Fallback winner (no tickets sold)")
    else:
        print(f"Winning Ticket: {result['winning_ticket']}")
        print(f"Total Weight  : {result['total_tickets']}")
    return 0


def cmd_benchmark(args: argparse.Namespace) -> int:
    settings = _settings(args)
    if not settings.rpc_url:
        raise SystemExit("Missing RPC_URL (or --rpc-url).")
    rpc = RpcClient(settings.rpc_url, timeout_s=args.timeout)
    try:
        results = benchmark_rpc(rpc, num_requests=args.requests)
    finally:
        rpc.close()

    print(f"=== RPC benchmark ({args.requests} requests each) ===")
    for method, stats in results.items():
        print(
            f"{method:<22} avg {stats['avg_ms']:.2f}ms  "
            f"min {stats['min_ms']:.2f}ms  max {stats['max_ms']:.2f}ms"
        )
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="base-jackpot",
        description="LP-backed jackpot ledger and round operator tool.",
    )
    p.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    p.add_argument("--state", default=None, help="Ledger state JSON (else env / default).")
    p.add_argument("--rpc-url", default=None, help="Override RPC URL (else use env).")
    p.add_argument("--timeout", type=float, default=60.0, help="RPC timeout seconds.")

    sub = p.add_subparsers(dest="cmd", required=True)

    i = sub.add_parser("init", help="Create a fresh ledger state file.")
    i.add_argument("--address", default="jackpot", help="Address of the jackpot itself.")
    i.add_argument("--symbol", default="USDC", help="Pool token symbol.")
    i.add_argument("--force", action="store_true", help="Overwrite existing state.")
    i.set_defaults(func=cmd_init)

    m = sub.add_parser("mint", help="Mint pool tokens to an address (test ledgers).")
    m.add_argument("--to", required=True)
    m.add_argument("--amount", required=True, type=int, help="Raw units.")
    m.set_defaults(func=cmd_mint)

    a = sub.add_parser("approve", help="Approve the jackpot to pull tokens.")
    a.add_argument("--from", dest="sender", required=True)
    a.add_argument("--amount", required=True, type=int)
    a.set_defaults(func=cmd_approve)

    d = sub.add_parser("deposit-lp", help="Deposit LP principal at a risk percentage.")
    d.add_argument("--from", dest="sender", required=True)
    d.add_argument("--risk", required=True, type=int, help="1-100.")
    d.add_argument("--amount", required=True, type=int)
    d.set_defaults(func=cmd_deposit_lp)

    w = sub.add_parser("withdraw-lp", help="Withdraw LP principal (all if no amount).")
    w.add_argument("--from", dest="sender", required=True)
    w.add_argument("--amount", type=int, default=None)
    w.set_defaults(func=cmd_withdraw_lp)

    r = sub.add_parser("adjust-risk", help="Change LP risk percentage.")
    r.add_argument("--from", dest="sender", required=True)
    r.add_argument("--risk", required=True, type=int)
    r.set_defaults(func=cmd_adjust_risk)

    b = sub.add_parser("buy-ticket", help="Purchase tickets.")
    b.add_argument("--from", dest="sender", required=True)
    b.add_argument("--amount", required=True, type=int)
    b.add_argument("--referrer", default=None)
    b.add_argument("--recipient", default=None, help="Defaults to --from.")
    b.set_defaults(func=cmd_buy_ticket)

    rj = sub.add_parser("run-jackpot", help="Lock the round and request entropy.")
    rj.add_argument("--seed", default=None, help="User random number (hex). Random if omitted.")
    rj.add_argument("--fee", type=int, default=None, help="Entropy fee to pay.")
    rj.set_defaults(func=cmd_run_jackpot)

    f = sub.add_parser("fulfill", help="Deliver entropy from a finalized block and settle.")
    f.add_argument("--request-id", type=int, default=None)
    f.add_argument(
        "--block-feed-file",
        default=None,
        help=(
            "Path to a block feed file to source the blockhash. "
            "JSON naming the target block number and its hash."
        ),
    )
    f.add_argument("--out", default="audit.json", help="Audit output JSON path.")
    f.set_defaults(func=cmd_fulfill)

    ww = sub.add_parser("withdraw-winnings", help="Claim winnings.")
    ww.add_argument("--from", dest="sender", required=True)
    ww.set_defaults(func=cmd_withdraw_winnings)

    wr = sub.add_parser("withdraw-referral-fees", help="Claim referral fees.")
    wr.add_argument("--from", dest="sender", required=True)
    wr.set_defaults(func=cmd_withdraw_referral_fees)

    wp = sub.add_parser("withdraw-protocol-fees", help="Send protocol fees to the fee address.")
    wp.set_defaults(func=cmd_withdraw_protocol_fees)

    sub.add_parser("info", help="Pool totals and last winner.").set_defaults(func=cmd_info)
    sub.add_parser("status", help="Lock state and time to next round.").set_defaults(func=cmd_status)

    li = sub.add_parser("lp-info", help="Show an LP record.")
    li.add_argument("address")
    li.set_defaults(func=cmd_lp_info)

    ui = sub.add_parser("user-info", help="Show a user record.")
    ui.add_argument("address")
    ui.set_defaults(func=cmd_user_info)

    v = sub.add_parser("verify", help="Verify an existing audit.json deterministically.")
    v.add_argument("--audit", required=True, help="Path to audit.json.")
    v.set_defaults(func=cmd_verify)

    bm = sub.add_parser("benchmark", help="Measure RPC endpoint latency.")
    bm.add_argument("--requests", type=int, default=10)
    bm.set_defaults(func=cmd_benchmark)

    return p


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    try:
        code = args.func(args)
    except JackpotError as e:
        logging.getLogger(args.cmd).error("%s", e)
        code = 1
    raise SystemExit(code)
