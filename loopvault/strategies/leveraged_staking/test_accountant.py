from __future__ import annotations

import pytest

from loopvault.core.constants.base import WAD
from loopvault.core.errors import ExternalFailure
from loopvault.core.utils.fixed_point import Rounding, mul_div, to_assets_down, to_assets_up
from loopvault.core.vault.events import AccrueInterest
from loopvault.testing.simulated import BASE_TOKEN, VAULT_ADDRESS, StaticFeePolicy
from loopvault.testing.simulation import (
    ALICE,
    E18,
    FEE_RECIPIENT,
    OWNER,
    PROTOCOL_FEE_RECIPIENT,
    build_strategy,
    default_params,
    fund,
)


async def _deposited(strategy, chain, assets=1_000 * E18):
    fund(chain, ALICE, assets)
    await strategy.deposit(assets, ALICE, sender=ALICE)


@pytest.mark.asyncio
async def test_total_assets_nets_every_leg(strategy, seeded_chain):
    await _deposited(strategy, seeded_chain)
    seeded_chain.mint(BASE_TOKEN, VAULT_ADDRESS, 3 * E18)
    market_id = default_params().market_params.id
    position = await strategy.market.position(market_id, VAULT_ADDRESS)
    totals = await strategy.market.market_totals(market_id)
    tier = await strategy.market.tier_borrow_totals(market_id, position.rate_tier)

    expected = (
        to_assets_down(
            position.supply_shares, totals.total_supply_assets, totals.total_supply_shares
        )
        + await strategy.certificate.shares_to_value(position.collateral)
        + seeded_chain.balance_of(BASE_TOKEN, VAULT_ADDRESS)
        - to_assets_up(position.borrow_shares, tier.borrow_assets, tier.borrow_shares)
    )
    assert await strategy.accountant.total_assets() == expected


@pytest.mark.asyncio
async def test_first_deposit_mints_one_share_per_asset(strategy, seeded_chain):
    shares = await strategy.preview_deposit(1_000 * E18)
    assert shares == 1_000 * E18

    await _deposited(strategy, seeded_chain)
    assert strategy.shares.balance_of(ALICE) == 1_000 * E18
    assert await strategy.total_assets() == pytest.approx(1_000 * E18, rel=1e-12)


@pytest.mark.asyncio
async def test_conversions_round_toward_the_pool(strategy, seeded_chain):
    await _deposited(strategy, seeded_chain)
    seeded_chain.mint(BASE_TOKEN, VAULT_ADDRESS, 7 * E18 // 3)
    accountant = strategy.accountant
    total, supply = await accountant.total_assets(), strategy.shares.total_supply

    down = accountant.to_shares(E18 + 1, total, supply, Rounding.FLOOR)
    up = accountant.to_shares(E18 + 1, total, supply, Rounding.CEIL)
    assert down <= up <= down + 1
    assert accountant.to_assets(down, total, supply, Rounding.FLOOR) <= E18 + 1


@pytest.mark.asyncio
async def test_decimals_offset_scales_virtual_shares(seeded_chain):
    strategy = build_strategy(seeded_chain)
    await strategy.initialize(default_params(decimals_offset=6), sender=OWNER)

    assert strategy.accountant.virtual_shares == 10**6
    assert await strategy.preview_deposit(E18) == E18 * 10**6


@pytest.mark.asyncio
async def test_fee_shares_price_interest_net_of_fee(strategy):
    strategy.state.fees.fee = WAD // 10
    strategy.state.fees.last_total_assets = 1_000 * E18

    fee_shares = strategy.accountant.fee_shares_for(1_010 * E18, 1_000 * E18)

    assert fee_shares == mul_div(E18, 1_000 * E18 + 1, 1_009 * E18 + 1, Rounding.FLOOR)
    assert strategy.accountant.fee_shares_for(990 * E18, 1_000 * E18) == 0


@pytest.mark.asyncio
async def test_previews_include_pending_fee_shares(strategy, seeded_chain):
    await strategy.set_fee_recipient(FEE_RECIPIENT, sender=OWNER)
    await strategy.set_fee(WAD // 5, sender=OWNER)
    await _deposited(strategy, seeded_chain)
    seeded_chain.mint(BASE_TOKEN, VAULT_ADDRESS, 50 * E18)

    pending, total = await strategy.accountant.accrued_fee_shares()
    supply = strategy.shares.total_supply
    assert pending > 0
    assert await strategy.convert_to_assets(E18) == strategy.accountant.to_assets(
        E18, total, supply + pending, Rounding.FLOOR
    )


@pytest.mark.asyncio
async def test_protocol_split_is_floor_of_fraction(seeded_chain):
    policy = StaticFeePolicy(WAD // 3, PROTOCOL_FEE_RECIPIENT)
    strategy = build_strategy(seeded_chain, fee_policy=policy)
    await strategy.initialize(default_params(), sender=OWNER)

    owner, protocol, recipient = await strategy.accountant.split_fee_shares(1_000)

    assert protocol == 333
    assert owner == 667
    assert recipient == PROTOCOL_FEE_RECIPIENT


@pytest.mark.asyncio
async def test_protocol_fraction_without_recipient_fails(seeded_chain):
    strategy = build_strategy(seeded_chain, fee_policy=StaticFeePolicy(WAD // 10))
    await strategy.initialize(default_params(), sender=OWNER)

    with pytest.raises(ExternalFailure):
        await strategy.accountant.split_fee_shares(1_000)


@pytest.mark.asyncio
async def test_accrue_without_interest_only_moves_the_mark(strategy, seeded_chain):
    await _deposited(strategy, seeded_chain)
    supply = strategy.shares.total_supply

    total = await strategy.accrue_fee(sender=ALICE)

    assert strategy.shares.total_supply == supply
    assert strategy.state.fees.last_total_assets == total
    event = strategy.events[-1]
    assert isinstance(event, AccrueInterest)
    assert event.fee_shares == 0


@pytest.mark.asyncio
async def test_losses_charge_no_fee(strategy, seeded_chain):
    await strategy.set_fee_recipient(FEE_RECIPIENT, sender=OWNER)
    await strategy.set_fee(WAD // 10, sender=OWNER)
    await _deposited(strategy, seeded_chain)
    before = await strategy.total_assets()
    seeded_chain.add_market_interest(default_params().market_params.id, 10 * E18)

    after = await strategy.accrue_fee(sender=ALICE)

    assert after < before
    assert strategy.shares.balance_of(FEE_RECIPIENT) == 0
    assert strategy.state.fees.last_total_assets == after
