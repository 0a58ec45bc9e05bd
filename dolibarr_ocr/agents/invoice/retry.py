"""
Key/model failover policy for Gemini calls.

A call is attempted at a position (key_index, model_index, attempt). After a
failure, next_state() decides where to go from the failure kind alone:

- RATE_LIMITED: the key is exhausted. Jump to the first model of the next key,
  without waiting. A rate-limited key is never retried.
- TRANSIENT: the model is overloaded. Retry the same model after a fixed delay
  while attempts remain, then move to the next model.
- OTHER: move to the next model, then to the next key.

When no position is left the plan is exhausted and next_state() returns None.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from dolibarr_ocr.errors import UpstreamError

RATE_LIMIT_STATUSES = frozenset(["RESOURCE_EXHAUSTED"])
TRANSIENT_STATUSES = frozenset(["UNAVAILABLE"])


class FailureKind(Enum):
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    OTHER = "other"


@dataclass(frozen=True)
class AttemptState:
    key_index: int
    model_index: int
    attempt: int  # 1-based


@dataclass(frozen=True)
class RetryPolicy:
    model_counts: List[int]  # number of models to try for each key, in key order
    max_attempts_per_model: int

    @property
    def key_count(self) -> int:
        return len(self.model_counts)


@dataclass(frozen=True)
class Transition:
    state: AttemptState
    wait: bool  # sleep the fixed retry delay before the next attempt


def initial_state(policy: RetryPolicy) -> Optional[AttemptState]:
    """First position of the plan, or None when there is nothing to try."""
    for key_index, count in enumerate(policy.model_counts):
        if count > 0:
            return AttemptState(key_index=key_index, model_index=0, attempt=1)
    return None


def _first_model_from_key(policy: RetryPolicy, key_index: int) -> Optional[AttemptState]:
    for index in range(key_index, policy.key_count):
        if policy.model_counts[index] > 0:
            return AttemptState(key_index=index, model_index=0, attempt=1)
    return None


def _next_model(policy: RetryPolicy, state: AttemptState) -> Optional[AttemptState]:
    if state.model_index + 1 < policy.model_counts[state.key_index]:
        return AttemptState(key_index=state.key_index, model_index=state.model_index + 1, attempt=1)
    return _first_model_from_key(policy, state.key_index + 1)


def next_state(
    state: AttemptState,
    failure: FailureKind,
    policy: RetryPolicy,
) -> Optional[Transition]:
    """
    Compute the position to try after a failure.

    Args:
        state: Position that just failed
        failure: Classified failure kind
        policy: Plan dimensions

    Returns:
        The next Transition, or None when the plan is exhausted
    """
    if failure is FailureKind.RATE_LIMITED:
        target = _first_model_from_key(policy, state.key_index + 1)
        return Transition(state=target, wait=False) if target else None

    if failure is FailureKind.TRANSIENT and state.attempt < policy.max_attempts_per_model:
        return Transition(
            state=AttemptState(
                key_index=state.key_index,
                model_index=state.model_index,
                attempt=state.attempt + 1,
            ),
            wait=True,
        )

    target = _next_model(policy, state)
    return Transition(state=target, wait=False) if target else None


def _api_status(body: Optional[str]) -> Optional[str]:
    """Read the 'error.status' field of a Google API error body."""
    if not body:
        return None
    try:
        payload = json.loads(body)
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, dict):
        return error.get("status")
    return None


def classify_failure(error: Exception) -> FailureKind:
    """Map a failed Gemini call to a FailureKind using its HTTP/API status."""
    if not isinstance(error, UpstreamError):
        return FailureKind.OTHER

    status = _api_status(error.body)
    if error.status_code == 429 or status in RATE_LIMIT_STATUSES:
        return FailureKind.RATE_LIMITED
    if error.status_code == 503 or status in TRANSIENT_STATUSES:
        return FailureKind.TRANSIENT
    return FailureKind.OTHER
