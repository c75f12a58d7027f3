from loopvault.core.constants.base import WAD

DEFAULT_SHARE_NAME = "Leveraged Staking Vault"
DEFAULT_SHARE_SYMBOL = "lsVAULT"

# Taken off the collateral principal so the opening supply never exceeds what
# the deposit can fund after conversion rounding.
SPLIT_ROUNDING_SLACK = 1

# Continuation handed to the market with a settlement request:
# (debt shares, collateral to release, requested assets, receiver, path, deadline)
SETTLEMENT_CONTINUATION_TYPES = [
    "uint256",
    "uint256",
    "uint256",
    "address",
    "bytes",
    "uint256",
]

# Entry points that may be combined in one multicall
BATCHABLE_CALLS = (
    "deposit",
    "mint",
    "withdraw",
    "redeem",
    "accrue_fee",
    "set_fee",
    "set_fee_recipient",
    "set_max_swap_loss",
    "set_target_utilization",
    "set_default_swap_path",
)

MAX_TARGET_UTILIZATION = WAD
MAX_SWAP_LOSS = WAD
