from __future__ import annotations

from decimal import Decimal

from lexbill.models.enums import HourlyRateTableType, ProposalType, WorkerProfile
from lexbill.services.rates import RateConfig, WorkerRate, clamp_to_range, resolve_project_rate, resolve_rate

LAWYER = WorkerRate(user_id=7, profile=WorkerProfile.LAWYER, default_hourly_rate=Decimal("120"))
NO_DEFAULT = WorkerRate(user_id=8, profile=WorkerProfile.TRAINEE, default_hourly_rate=None)


def test_explicit_rate_wins():
    config = RateConfig(use_blended_rate=True, blended_rate=Decimal("90"))
    assert resolve_rate(config, LAWYER, Decimal("75")) == Decimal("75")


def test_no_config_uses_worker_default():
    assert resolve_rate(None, LAWYER) == Decimal("120")


def test_blended_rate():
    config = RateConfig(use_blended_rate=True, blended_rate=Decimal("90"))
    assert resolve_rate(config, LAWYER) == Decimal("90")


def test_blended_rate_ignored_when_not_positive():
    config = RateConfig(use_blended_rate=True, blended_rate=Decimal("0"))
    assert resolve_rate(config, LAWYER) == Decimal("120")


def test_rate_table_by_profile():
    config = RateConfig(
        hourly_rate_table_type=HourlyRateTableType.HOURLY_TABLE,
        hourly_rate_table_rates={"LAWYER": Decimal("150"), "TRAINEE": Decimal("60")},
    )
    assert resolve_rate(config, LAWYER) == Decimal("150")
    assert resolve_rate(config, NO_DEFAULT) == Decimal("60")


def test_rate_table_missing_profile_falls_back():
    config = RateConfig(
        hourly_rate_table_type=HourlyRateTableType.HOURLY_TABLE,
        hourly_rate_table_rates={"PARTNER": Decimal("300")},
    )
    assert resolve_rate(config, LAWYER) == Decimal("120")


def test_rate_range_clamps_default():
    config = RateConfig(
        hourly_rate_table_type=HourlyRateTableType.RATE_RANGE,
        hourly_rate_range_min=Decimal("130"),
        hourly_rate_range_max=Decimal("200"),
    )
    assert resolve_rate(config, LAWYER) == Decimal("130")


def test_rate_range_without_default_uses_midpoint():
    config = RateConfig(
        hourly_rate_table_type=HourlyRateTableType.RATE_RANGE,
        hourly_rate_range_min=Decimal("100"),
        hourly_rate_range_max=Decimal("151"),
    )
    assert resolve_rate(config, NO_DEFAULT) == Decimal("125.50")


def test_clamp_to_range_handles_inverted_bounds():
    assert clamp_to_range(Decimal("500"), Decimal("200"), Decimal("100")) == Decimal("200")
    assert clamp_to_range(Decimal("150"), Decimal("100"), Decimal("200")) == Decimal("150")


def test_non_hourly_proposal_uses_worker_default():
    config = RateConfig(use_blended_rate=True, blended_rate=Decimal("90"), applies_hourly_rates=False)
    assert resolve_rate(config, LAWYER) == Decimal("120")


def test_from_model_gates_on_proposal_type(factory):
    proposal = factory.proposal(
        proposal_type=ProposalType.FIXED_FEE,
        use_blended_rate=True,
        blended_rate=Decimal("90"),
    )
    config = RateConfig.from_model(proposal)
    assert config.applies_hourly_rates is False
    assert resolve_rate(config, LAWYER) == Decimal("120")


def test_project_user_rate_overrides_everything_but_explicit():
    proposal_config = RateConfig(use_blended_rate=True, blended_rate=Decimal("90"))
    project_config = RateConfig(use_blended_rate=True, blended_rate=Decimal("100"))
    user_rates = {7: Decimal("175")}
    assert resolve_project_rate(project_config, user_rates, proposal_config, LAWYER) == Decimal("175")
    assert resolve_project_rate(project_config, user_rates, proposal_config, LAWYER, Decimal("10")) == Decimal("10")


def test_project_config_then_proposal():
    proposal_config = RateConfig(use_blended_rate=True, blended_rate=Decimal("90"))
    assert resolve_project_rate(RateConfig(), {}, proposal_config, LAWYER) == Decimal("90")
    project_config = RateConfig(use_blended_rate=True, blended_rate=Decimal("100"))
    assert resolve_project_rate(project_config, {}, proposal_config, LAWYER) == Decimal("100")
    assert resolve_project_rate(None, {}, None, LAWYER) == Decimal("120")
