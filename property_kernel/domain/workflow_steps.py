"""
Step ordering rules for workflow templates.

Every template's steps, sorted by ``step_order``, must read exactly
1, 2, ..., N.  Explicit orders supplied by an author are validated; edits
(add, remove, move) are renumbered to a dense sequence before they are
persisted.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import replace

from property_kernel.domain.approval import StepSpec
from property_kernel.exceptions import InvalidStepOrderError


def is_contiguous(step_orders: Iterable[int]) -> bool:
    orders = sorted(step_orders)
    return bool(orders) and orders == list(range(1, len(orders) + 1))


def validate_step_orders(step_orders: Sequence[int]) -> None:
    """Raise InvalidStepOrderError unless orders are exactly 1..N."""
    orders = list(step_orders)
    if not orders:
        raise InvalidStepOrderError(orders, "At least one approval step is required")
    if len(set(orders)) != len(orders):
        raise InvalidStepOrderError(orders, "Step orders must be unique")
    if not is_contiguous(orders):
        raise InvalidStepOrderError(
            orders, "Step orders must be sequential starting from 1"
        )


def validate_override_policy(specs: Sequence[StepSpec]) -> None:
    for spec in specs:
        if spec.can_override and spec.override_min_level is None:
            raise InvalidStepOrderError(
                [s.step_order or 0 for s in specs],
                f"Step '{spec.step_name}' allows override but has no override_min_level",
            )
        if spec.override_min_level is not None and spec.override_min_level < 0:
            raise InvalidStepOrderError(
                [s.step_order or 0 for s in specs],
                f"Step '{spec.step_name}' has a negative override_min_level",
            )


def renumber(specs: Sequence[StepSpec]) -> tuple[StepSpec, ...]:
    """
    Dense 1..N renumbering.

    Steps are ordered by their current ``step_order``; steps without one keep
    their relative input position after all numbered steps.
    """
    indexed = list(enumerate(specs))
    indexed.sort(
        key=lambda pair: (
            pair[1].step_order is None,
            pair[1].step_order or 0,
            pair[0],
        )
    )
    return tuple(
        replace(spec, step_order=position)
        for position, (_, spec) in enumerate(indexed, start=1)
    )


def normalize_explicit(specs: Sequence[StepSpec]) -> tuple[StepSpec, ...]:
    """
    Validate author-supplied orders.

    When no spec carries an order, input position defines it.  When orders
    are given they must all be present and already contiguous.
    """
    if not specs:
        raise InvalidStepOrderError([], "At least one approval step is required")
    if all(s.step_order is None for s in specs):
        ordered = renumber(specs)
    else:
        if any(s.step_order is None for s in specs):
            raise InvalidStepOrderError(
                [s.step_order or 0 for s in specs],
                "Either every step or no step must declare a step order",
            )
        validate_step_orders([s.step_order for s in specs])
        ordered = tuple(sorted(specs, key=lambda s: s.step_order))
    validate_override_policy(ordered)
    return ordered


def insert_step(
    specs: Sequence[StepSpec],
    new_step: StepSpec,
    position: int | None = None,
) -> tuple[StepSpec, ...]:
    """Insert at 1-based ``position`` (append when None) and renumber."""
    ordered = list(renumber(specs))
    index = len(ordered) if position is None else max(0, min(position - 1, len(ordered)))
    ordered.insert(index, replace(new_step, step_order=None))
    return _dense(ordered)


def remove_step(specs: Sequence[StepSpec], step_order: int) -> tuple[StepSpec, ...]:
    ordered = list(renumber(specs))
    if not 1 <= step_order <= len(ordered):
        raise InvalidStepOrderError(
            [s.step_order for s in ordered], f"No step at position {step_order}"
        )
    del ordered[step_order - 1]
    if not ordered:
        raise InvalidStepOrderError([], "At least one approval step is required")
    return _dense(ordered)


def move_step(
    specs: Sequence[StepSpec],
    from_order: int,
    to_order: int,
) -> tuple[StepSpec, ...]:
    ordered = list(renumber(specs))
    if not (1 <= from_order <= len(ordered) and 1 <= to_order <= len(ordered)):
        raise InvalidStepOrderError(
            [s.step_order for s in ordered],
            f"Cannot move step {from_order} to position {to_order}",
        )
    step = ordered.pop(from_order - 1)
    ordered.insert(to_order - 1, step)
    return _dense(ordered)


def _dense(ordered: list[StepSpec]) -> tuple[StepSpec, ...]:
    return tuple(
        replace(spec, step_order=position)
        for position, spec in enumerate(ordered, start=1)
    )
