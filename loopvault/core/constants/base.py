WAD = 10**18
MAX_UINT256 = 2**256 - 1
MAX_UINT24 = 2**24 - 1

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Performance fee cap (fraction of accrued interest)
MAX_FEE = WAD // 2

# Exits within 1e-14 of the whole position are treated as full exits so that no
# collateral or debt dust is left behind.
FULL_EXIT_THRESHOLD = WAD - 10**4

DEFAULT_MAX_LOOP_ITERATIONS = 10
DEFAULT_DECIMALS_OFFSET = 0
DEFAULT_SWAP_DEADLINE_SECONDS = 300

# Lending-market share accounting (virtual liquidity against share inflation)
MARKET_VIRTUAL_SHARES = 10**6
MARKET_VIRTUAL_ASSETS = 1

# Uniswap v3 style fee tiers are in hundredths of a bip
FEE_TIER_DENOMINATOR = 1_000_000
