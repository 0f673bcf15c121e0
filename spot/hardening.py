"""
SPOT Validation and Hardening Module

Error taxonomy, input validation, invariant enforcement and the atomic
operation wrapper shared by every accounting component.

Execution Model:
    - Every mutating operation runs inside one critical section on the
      shared ledger lock
    - A component never observes its own partially-applied state
    - Any failure restores every participant to its pre-call snapshot
    - Zero-amount inputs are no-ops, never errors

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import threading
from enum import Enum
from functools import wraps
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Set, TypeVar


# =============================================================================
# VALIDATION ERROR TYPES
# =============================================================================

class SpotError(Exception):
    """Base class for accounting failures."""
    pass


class ValidationError(SpotError):
    """Malformed input."""

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")


class InvariantViolation(SpotError):
    """State machine or ordering invariant violated."""
    pass


class ReentrancyViolation(InvariantViolation):
    """A component was re-entered while an operation was in progress."""
    pass


# =============================================================================
# ACCOUNTING ERROR TYPES
# =============================================================================

class UnacceptableBond(SpotError):
    """Candidate bond failed queue admission."""
    pass


class UnacceptableDeposit(SpotError):
    """Tranche cannot be deposited into the perp."""
    pass


class UnacceptableRedemption(SpotError):
    """Redemption request cannot be honoured."""
    pass


class UnacceptableRollover(SpotError):
    """Rollover input or output is not eligible."""
    pass


class UnacceptableParams(SpotError):
    """Parameters with a zero divisor or out-of-range configuration."""
    pass


class UnexpectedAsset(SpotError):
    """Asset is not a recognized reserve or deployed asset."""
    pass


class InsufficientDeployment(SpotError):
    """Usable collateral is below the deployment floor."""
    pass


class DeployedCountOverLimit(SpotError):
    """Deployment would exceed the tracked asset ceiling."""
    pass


class LiquidityOutOfBounds(SpotError):
    """Swap would leave vault liquidity outside its bounds."""
    pass


class UnacceptableSwap(SpotError):
    """Swap amount or fee configuration rejected."""
    pass


class InvalidPerc(UnacceptableParams):
    """Fee percentage outside the permitted range."""
    pass


# =============================================================================
# INPUT VALIDATORS
# =============================================================================

class Validators:
    """Collection of input validators."""

    MAX_ID_LENGTH = 128

    @staticmethod
    def validate_amount(value: Any, field_name: str = "amount") -> int:
        """Validate a fixed-point amount and return it."""
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(field_name, f"Expected int, got {type(value).__name__}", value)
        if value < 0:
            raise ValidationError(field_name, "Must be non-negative", value)
        return value

    @classmethod
    def validate_id(cls, value: Any, field_name: str = "id") -> str:
        """Validate a token or account identifier."""
        if not isinstance(value, str):
            raise ValidationError(field_name, f"Expected string, got {type(value).__name__}", value)
        sanitized = value.strip()
        if not sanitized:
            raise ValidationError(field_name, "Cannot be empty", value)
        if len(sanitized) > cls.MAX_ID_LENGTH:
            raise ValidationError(field_name, f"Too long (max {cls.MAX_ID_LENGTH} chars)", value)
        return sanitized


# =============================================================================
# STATE MACHINE INVARIANTS
# =============================================================================

class InvariantChecker:
    """Enforces state machine invariants."""

    @staticmethod
    def check_state_transition(
        current_state: Enum,
        target_state: Enum,
        valid_transitions: Dict[Enum, Set[Enum]],
    ) -> None:
        """Verify state transition is valid."""
        valid_targets = valid_transitions.get(current_state, set())
        if target_state not in valid_targets:
            raise InvariantViolation(
                f"Invalid state transition: {current_state.value} -> {target_state.value}. "
                f"Valid targets: {sorted(s.value for s in valid_targets)}"
            )

    @staticmethod
    def check_strictly_increasing(field_name: str, values: Iterable[int]) -> None:
        """Ensure a sequence is strictly increasing."""
        previous: Optional[int] = None
        for value in values:
            if previous is not None and value <= previous:
                raise InvariantViolation(
                    f"{field_name} must be strictly increasing: {previous} followed by {value}"
                )
            previous = value

    @staticmethod
    def check_non_negative(field_name: str, value: int) -> None:
        """Ensure value is non-negative."""
        if value < 0:
            raise InvariantViolation(f"{field_name} cannot be negative: {value}")

    @staticmethod
    def check_bounded(field_name: str, value: int, upper: int) -> None:
        """Ensure value does not exceed an upper bound."""
        if value > upper:
            raise InvariantViolation(f"{field_name} exceeds bound: {value} > {upper}")


# =============================================================================
# ATOMIC OPERATIONS
# =============================================================================

class Snapshotable(Protocol):
    """State holder that can capture and restore itself."""

    def snapshot(self) -> Any:
        ...

    def restore(self, state: Any) -> None:
        ...


F = TypeVar("F", bound=Callable[..., Any])


class AtomicComponent:
    """
    Mixin for components whose public operations are all-or-nothing.

    Subclasses set ``self._lock`` (normally the shared ledger lock) and
    implement ``atomic_participants`` returning every object whose state
    an operation may touch, including the component itself.
    """

    _lock: threading.RLock
    _in_progress: bool = False

    def atomic_participants(self) -> List[Snapshotable]:
        raise NotImplementedError

    @property
    def busy(self) -> bool:
        return self._in_progress


def atomic_operation(func: F) -> F:
    """
    Decorator making a component method atomic.

    Acquires the component lock, rejects re-entry into the same component,
    snapshots all participants and restores them if the call raises.
    """
    @wraps(func)
    def wrapper(self: AtomicComponent, *args: Any, **kwargs: Any) -> Any:
        with self._lock:
            if self._in_progress:
                raise ReentrancyViolation(
                    f"{type(self).__name__}.{func.__name__} called while another operation is in progress"
                )
            self._in_progress = True
            try:
                saved = [(p, p.snapshot()) for p in self.atomic_participants()]
                try:
                    return func(self, *args, **kwargs)
                except BaseException:
                    for participant, state in reversed(saved):
                        participant.restore(state)
                    raise
            finally:
                self._in_progress = False
    return wrapper  # type: ignore[return-value]
