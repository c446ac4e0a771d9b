"""Hourly rate resolution for new timesheet entries.

Pure functions over plain values; ``RateConfig.from_model`` and
``WorkerRate.from_user`` adapt ORM rows to them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping, Optional

from lexbill.models.enums import HourlyRateTableType, ProposalType, WorkerProfile
from lexbill.services.money import Numeric, is_positive, q, to_decimal


@dataclass(frozen=True)
class RateConfig:
    use_blended_rate: bool = False
    blended_rate: Optional[Decimal] = None
    hourly_rate_table_type: Optional[HourlyRateTableType] = None
    hourly_rate_table_rates: Mapping[str, Decimal] = field(default_factory=dict)
    hourly_rate_range_min: Optional[Decimal] = None
    hourly_rate_range_max: Optional[Decimal] = None
    applies_hourly_rates: bool = True

    @classmethod
    def from_model(cls, row) -> "RateConfig":
        proposal_type = getattr(row, "proposal_type", None)
        raw_rates = row.hourly_rate_table_rates or {}
        return cls(
            use_blended_rate=bool(row.use_blended_rate),
            blended_rate=row.blended_rate,
            hourly_rate_table_type=row.hourly_rate_table_type,
            hourly_rate_table_rates={str(key): to_decimal(value) for key, value in raw_rates.items() if value is not None},
            hourly_rate_range_min=row.hourly_rate_range_min,
            hourly_rate_range_max=row.hourly_rate_range_max,
            # Projects carry no type; proposals only price hours when they are hourly.
            applies_hourly_rates=proposal_type in (None, ProposalType.HOURLY),
        )


@dataclass(frozen=True)
class WorkerRate:
    user_id: Optional[int] = None
    profile: Optional[WorkerProfile] = None
    default_hourly_rate: Optional[Decimal] = None

    @classmethod
    def from_user(cls, user) -> "WorkerRate":
        return cls(user_id=user.id, profile=user.profile, default_hourly_rate=user.default_hourly_rate)


def _configured_rate(config: RateConfig, worker: WorkerRate) -> Optional[Decimal]:
    """Rate from a blended rate, a profile table or a range; None when the config does not decide."""
    if config.use_blended_rate and is_positive(config.blended_rate):
        return to_decimal(config.blended_rate)

    if config.hourly_rate_table_type == HourlyRateTableType.HOURLY_TABLE:
        if worker.profile is not None:
            table_rate = config.hourly_rate_table_rates.get(worker.profile.value)
            if is_positive(table_rate):
                return to_decimal(table_rate)
        return None

    if (
        config.hourly_rate_table_type == HourlyRateTableType.RATE_RANGE
        and config.hourly_rate_range_min is not None
        and config.hourly_rate_range_max is not None
    ):
        return clamp_to_range(worker.default_hourly_rate, config.hourly_rate_range_min, config.hourly_rate_range_max)

    return None


def clamp_to_range(default_rate: Optional[Numeric], low: Numeric, high: Numeric) -> Optional[Decimal]:
    """Worker default clamped into ``[low, high]``; the midpoint when there is no default."""
    low_value, high_value = to_decimal(low), to_decimal(high)
    if low_value > high_value:
        low_value, high_value = high_value, low_value
    if default_rate is None:
        midpoint = q((low_value + high_value) / 2)
        return midpoint if midpoint > 0 else None
    return min(max(to_decimal(default_rate), low_value), high_value)


def resolve_rate(
    config: Optional[RateConfig],
    worker: WorkerRate,
    explicit_rate: Optional[Numeric] = None,
) -> Optional[Decimal]:
    if explicit_rate is not None:
        return to_decimal(explicit_rate)
    if config is None or not config.applies_hourly_rates:
        return worker.default_hourly_rate
    configured = _configured_rate(config, worker)
    if configured is not None:
        return configured
    return worker.default_hourly_rate


def resolve_project_rate(
    project_config: Optional[RateConfig],
    user_rates: Mapping[int, Decimal],
    proposal_config: Optional[RateConfig],
    worker: WorkerRate,
    explicit_rate: Optional[Numeric] = None,
) -> Optional[Decimal]:
    """Project-specific user rate, then project rates, then the proposal, then the worker default."""
    if explicit_rate is not None:
        return to_decimal(explicit_rate)

    if worker.user_id is not None and is_positive(user_rates.get(worker.user_id)):
        return to_decimal(user_rates[worker.user_id])

    if project_config is not None:
        configured = _configured_rate(project_config, worker)
        if configured is not None:
            return configured

    if proposal_config is not None:
        proposal_rate = resolve_rate(proposal_config, worker)
        if proposal_rate is not None:
            return proposal_rate

    return worker.default_hourly_rate
