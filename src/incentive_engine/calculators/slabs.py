"""Slab evaluation: graduated selection and marginal accumulation."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from incentive_engine.domain.plan import Slab
from incentive_engine.domain.values import HUNDRED


class SlabCoverageError(Exception):
    """Raised when no slab covers the evaluated metric."""

    def __init__(self, metric: Decimal, message: str | None = None):
        self.metric = metric
        super().__init__(message or f"No slab covers value {metric}")


@dataclass(frozen=True)
class SlabEvaluation:
    """Outcome of evaluating a slab set.

    ``amount`` is unrounded. ``applied_slab`` is the selected slab for
    graduated evaluation and the highest slab reached for marginal.
    """

    amount: Decimal
    applied_slab: Slab
    portions: list[tuple[Slab, Decimal]] = field(default_factory=list)


def slab_payout(slab: Slab, basis: Decimal) -> Decimal:
    """Payout of a single slab against a basis."""
    if slab.fixed_amount is not None:
        return slab.fixed_amount
    return basis * slab.rate / HUNDRED


def select_graduated_slab(slabs: list[Slab], metric: Decimal) -> Slab:
    """Highest slab whose band contains the metric.

    Bands are inclusive-lower, exclusive-upper, so a metric sitting on a
    boundary selects the higher slab. The final slab is unbounded.
    """
    ordered = sorted(slabs, key=lambda s: s.from_value)
    if not ordered:
        raise SlabCoverageError(metric, "Plan has no slabs")

    last = ordered[-1]
    for slab in reversed(ordered):
        if slab.contains(metric, treat_as_unbounded=slab is last):
            return slab
    raise SlabCoverageError(metric)


def evaluate_graduated(slabs: list[Slab], metric: Decimal, basis: Decimal) -> SlabEvaluation:
    slab = select_graduated_slab(slabs, metric)
    amount = slab_payout(slab, basis)
    return SlabEvaluation(amount=amount, applied_slab=slab, portions=[(slab, amount)])


def evaluate_marginal(slabs: list[Slab], value: Decimal) -> SlabEvaluation:
    """Apply each band's rate to the portion of value inside it and sum.

    A band contributes its fixed amount once the value reaches it. Same
    accumulation as progressive tax brackets.
    """
    ordered = sorted(slabs, key=lambda s: s.from_value)
    if not ordered or value < ordered[0].from_value:
        raise SlabCoverageError(value)

    total = Decimal("0")
    reached: Slab | None = None
    portions: list[tuple[Slab, Decimal]] = []

    for index, slab in enumerate(ordered):
        if value < slab.from_value:
            break

        is_last = index == len(ordered) - 1
        band_max = value if is_last or slab.to_value is None else slab.to_value
        in_band = min(value, band_max) - slab.from_value

        if slab.fixed_amount is not None:
            contribution = slab.fixed_amount
        else:
            contribution = in_band * slab.rate / HUNDRED

        total += contribution
        portions.append((slab, contribution))
        reached = slab

    return SlabEvaluation(amount=total, applied_slab=reached, portions=portions)
