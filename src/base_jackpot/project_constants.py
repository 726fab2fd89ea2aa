"""
Protocol-wide fixed parameters for the jackpot.

These values define the public rules of every round.
Changing them changes payouts and MUST be publicly announced.
"""

# Basis-point denominator for fees and ticket weights
BPS_DENOMINATOR = 10_000

# Pool token (USDC-style) uses 6 decimals
TOKEN_DECIMALS = 6

# LP risk election bounds (percent of principal at risk per round)
MIN_RISK_PERCENTAGE = 1
MAX_RISK_PERCENTAGE = 100

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Defaults used when nothing is configured
DEFAULT_TICKET_PRICE_RAW = 1  # whole tokens, scaled by TOKEN_DECIMALS
DEFAULT_ROUND_DURATION = 60 * 60 * 24  # 1 day
DEFAULT_FEE_BPS = 1000  # 10%
DEFAULT_REFERRAL_FEE_BPS = 500  # 5%
DEFAULT_MIN_LP_DEPOSIT = 1_000 * (10**TOKEN_DECIMALS)
DEFAULT_LP_LIMIT = 5
DEFAULT_USER_LIMIT = 1_000

# Fee the blockhash entropy provider charges per request (wei-like units)
DEFAULT_ENTROPY_FEE = 10**16

# Blocks between the entropy request and the block whose hash settles it
ENTROPY_BLOCK_DELAY = 5

# Where the CLI keeps the ledger between invocations
DEFAULT_STATE_FILE = "jackpot_state.json"
