from __future__ import annotations

import copy
from pathlib import Path

import pytest

import loopvault.core.config as config
from loopvault.core.constants.base import WAD

REPO_ROOT = Path(__file__).resolve().parents[2]


@pytest.fixture
def restore_global_config() -> None:
    original = copy.deepcopy(config.CONFIG)
    yield
    config.set_config(original)


def test_resolve_config_path_defaults_to_repo_root(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.delenv("LOOPVAULT_CONFIG_PATH", raising=False)
    monkeypatch.delenv("LOOPVAULT_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)

    assert config.resolve_config_path() == REPO_ROOT / "config.json"


def test_resolve_config_path_env_relative_is_repo_relative(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setenv("LOOPVAULT_CONFIG_PATH", "config.example.json")
    monkeypatch.chdir(tmp_path)

    assert config.resolve_config_path() == REPO_ROOT / "config.example.json"


def test_load_config_json_missing_file(tmp_path: Path) -> None:
    missing = tmp_path / "nope.json"
    assert config.load_config_json(missing) == {}
    with pytest.raises(FileNotFoundError):
        config.load_config_json(missing, require_exists=True)


def test_load_config_replaces_global_in_place(
    tmp_path: Path, restore_global_config: None
) -> None:
    held = config.CONFIG
    path = tmp_path / "config.json"
    path.write_text('{"strategy": {"leveraged_staking": {"fee": 0}}}')

    config.load_config(path)

    assert held is config.CONFIG
    assert held["strategy"]["leveraged_staking"]["fee"] == 0


def test_example_config_builds_strategy_params(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOOPVAULT_CONFIG_PATH", "config.example.json")
    settings = config.get_strategy_settings(config=config.load_config_json())
    params = settings.to_params()

    assert params.target_utilization == 9 * WAD // 10
    assert params.target_strategy_ltv == 85 * WAD // 100
    assert params.market_params.lltv == 915 * WAD // 1000
    assert params.base_asset == params.market_params.loan_token
    assert params.default_swap_path.first == params.base_asset
    assert params.default_swap_path.last == params.collateral_asset
    assert params.default_swap_path.fees == (500,)
    assert params.max_loop_iterations == 10
    fee, fee_recipient = settings.fee_settings()
    assert fee == WAD // 10
    assert fee_recipient.lower() == "0x" + "fe" * 20


def test_settings_reject_ltv_at_or_above_lltv() -> None:
    raw = config.load_config_json(REPO_ROOT / "config.example.json")
    section = copy.deepcopy(raw["strategy"]["leveraged_staking"])
    section["target_strategy_ltv"] = 0.95

    with pytest.raises(ValueError):
        config.get_strategy_settings(config={"strategy": {"leveraged_staking": section}})


def test_settings_reject_malformed_path() -> None:
    raw = config.load_config_json(REPO_ROOT / "config.example.json")
    section = copy.deepcopy(raw["strategy"]["leveraged_staking"])
    section["default_swap_path"] = "0x1234"

    with pytest.raises(ValueError):
        config.get_strategy_settings(config={"strategy": {"leveraged_staking": section}})


def test_missing_strategy_section() -> None:
    with pytest.raises(KeyError):
        config.get_strategy_settings(config={})
