"""
Memory model scheduler.

Two-component (stability, difficulty) forgetting-curve model with a
discrete New/Learning/Review/Relearning lifecycle. Everything here is pure:
callers persist the returned state and log entry.
"""

import math
from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from flashdeck.application.utils.clock import ensure_utc
from flashdeck.domain.constants import (
    DEFAULT_DESIRED_RETENTION,
    DEFAULT_EASY_BONUS,
    DEFAULT_HARD_INTERVAL_FACTOR,
    DEFAULT_LEARNING_STEPS,
    DEFAULT_MAXIMUM_INTERVAL,
    DEFAULT_PARAMETERS,
    DEFAULT_RELEARNING_STEPS,
    MAX_DIFFICULTY,
    MIN_DIFFICULTY,
    PARAMETER_COUNT,
    STABILITY_MIN,
)
from flashdeck.domain.errors import InvalidRating, InvalidState
from flashdeck.domain.models import CardState, Rating, ReviewLogEntry, State

_LN_090 = math.log(0.9)


def coerce_rating(rating: Rating | int) -> Rating:
    if isinstance(rating, bool):
        raise InvalidRating(rating)
    try:
        return Rating(rating)
    except ValueError:
        raise InvalidRating(rating) from None


def coerce_state(state: State | int) -> State:
    if isinstance(state, bool):
        raise InvalidState(state)
    try:
        return State(state)
    except ValueError:
        raise InvalidState(state) from None


def days_between(earlier: datetime | None, later: datetime) -> int:
    """Whole days from `earlier` to `later`, never negative."""
    if earlier is None:
        return 0
    return max(0, (ensure_utc(later) - ensure_utc(earlier)).days)


@dataclass(init=False)
class MemoryModel:
    """
    The scheduler configuration plus the math that uses it.

    Attributes:
        parameters: The 19 model weights.
        desired_retention: Target recall probability when a card comes due.
        maximum_interval: Longest interval, in days, a Review card may receive.
        learning_steps: Sub-day steps (minutes) a New card walks through.
        relearning_steps: Sub-day steps (minutes) after a lapse.
        easy_bonus: Interval multiplier for Easy answers that reach Review.
        hard_interval_factor: Interval multiplier for Hard answers in Review.
    """

    parameters: tuple[float, ...]
    desired_retention: float
    maximum_interval: int
    learning_steps: tuple[int, ...]
    relearning_steps: tuple[int, ...]
    easy_bonus: float
    hard_interval_factor: float

    def __init__(
        self,
        parameters: Sequence[float] = DEFAULT_PARAMETERS,
        desired_retention: float = DEFAULT_DESIRED_RETENTION,
        maximum_interval: int = DEFAULT_MAXIMUM_INTERVAL,
        learning_steps: Sequence[int] = DEFAULT_LEARNING_STEPS,
        relearning_steps: Sequence[int] = DEFAULT_RELEARNING_STEPS,
        easy_bonus: float = DEFAULT_EASY_BONUS,
        hard_interval_factor: float = DEFAULT_HARD_INTERVAL_FACTOR,
    ) -> None:
        if len(parameters) != PARAMETER_COUNT:
            raise ValueError(
                f"Expected {PARAMETER_COUNT} parameters, got {len(parameters)}"
            )
        if not 0 < desired_retention < 1:
            raise ValueError(f"desired_retention must be in (0, 1), got {desired_retention}")
        if maximum_interval < 1:
            raise ValueError(f"maximum_interval must be >= 1, got {maximum_interval}")

        self.parameters = tuple(float(p) for p in parameters)
        self.desired_retention = desired_retention
        self.maximum_interval = maximum_interval
        self.learning_steps = tuple(learning_steps)
        self.relearning_steps = tuple(relearning_steps)
        self.easy_bonus = easy_bonus
        self.hard_interval_factor = hard_interval_factor

    # ---------- Public API ----------

    def retrievability(self, state: CardState, now: datetime) -> float:
        """Predicted recall probability at `now`; 0 for cards never reviewed."""
        if coerce_state(state.state) == State.New or state.stability <= 0:
            return 0.0
        elapsed = days_between(state.last_review, now)
        return self._forgetting_curve(elapsed, state.stability)

    def schedule(
        self,
        state: CardState,
        rating: Rating | int,
        now: datetime,
        card_id: int | None = None,
    ) -> tuple[CardState, ReviewLogEntry]:
        rating = coerce_rating(rating)
        phase = coerce_state(state.state)
        now = ensure_utc(now)

        if phase == State.New:
            elapsed = 0
        else:
            elapsed = days_between(state.last_review, now)

        if phase == State.New or state.stability <= 0:
            stability = self._initial_stability(rating)
            difficulty = self._clamp_difficulty(self._initial_difficulty(rating))
        else:
            r = self._forgetting_curve(elapsed, state.stability)
            stability = self._next_stability(state.difficulty, state.stability, r, rating)
            difficulty = self._next_difficulty(state.difficulty, rating)

        updated = replace(
            state,
            stability=stability,
            difficulty=difficulty,
            elapsed_days=elapsed,
            reps=state.reps + 1,
            last_review=now,
        )
        self._transition(updated, phase, rating, now)

        log = ReviewLogEntry(
            card_id=card_id,
            rating=rating,
            scheduled_days=state.scheduled_days,
            actual_days=elapsed,
            review_date=now,
            stability=updated.stability,
            difficulty=updated.difficulty,
            elapsed_days=updated.elapsed_days,
            lapses=updated.lapses,
            reps=updated.reps,
            state=updated.state,
        )
        return updated, log

    def preview(self, state: CardState, now: datetime) -> dict[Rating, CardState]:
        """The state each rating would produce, for answer-button labels."""
        return {rating: self.schedule(state, rating, now)[0] for rating in Rating}

    # ---------- Lifecycle ----------

    def _transition(self, card: CardState, phase: State, rating: Rating, now: datetime) -> None:
        if phase == State.New:
            phase = State.Learning
            card.learning_steps = 0

        if phase in (State.Learning, State.Relearning):
            steps = self.learning_steps if phase == State.Learning else self.relearning_steps
            if not steps:
                self._graduate(card, rating, now)
                return

            if rating == Rating.Again:
                card.learning_steps = 0
                self._step(card, phase, steps[0], now)
            elif rating == Rating.Hard:
                current = min(card.learning_steps, len(steps) - 1)
                self._step(card, phase, steps[current], now)
            elif rating == Rating.Good:
                card.learning_steps += 1
                if card.learning_steps >= len(steps):
                    self._graduate(card, rating, now)
                else:
                    self._step(card, phase, steps[card.learning_steps], now)
            else:
                self._graduate(card, rating, now)
            return

        # Review
        if rating == Rating.Again:
            card.lapses += 1
            card.learning_steps = 0
            if self.relearning_steps:
                self._step(card, State.Relearning, self.relearning_steps[0], now)
                return
        self._graduate(card, rating, now)

    def _step(self, card: CardState, phase: State, minutes: int, now: datetime) -> None:
        card.state = phase
        card.scheduled_days = 0
        card.due = now + timedelta(minutes=minutes)

    def _graduate(self, card: CardState, rating: Rating, now: datetime) -> None:
        if rating == Rating.Hard:
            factor = self.hard_interval_factor
        elif rating == Rating.Easy:
            factor = self.easy_bonus
        else:
            factor = 1.0

        interval = self._next_interval(card.stability, factor)
        card.state = State.Review
        card.learning_steps = 0
        card.scheduled_days = interval
        card.due = now + timedelta(days=interval)

    # ---------- Model math ----------

    def _clamp_difficulty(self, difficulty: float) -> float:
        return min(max(difficulty, MIN_DIFFICULTY), MAX_DIFFICULTY)

    def _clamp_stability(self, stability: float) -> float:
        return max(stability, STABILITY_MIN)

    def _forgetting_curve(self, elapsed_days: int, stability: float) -> float:
        return (1 + elapsed_days / (9 * stability)) ** -1

    def _initial_stability(self, rating: Rating) -> float:
        return self._clamp_stability(self.parameters[rating - 1])

    def _initial_difficulty(self, rating: Rating) -> float:
        return self.parameters[4] - math.e ** (self.parameters[5] * (rating - 1)) + 1

    def _next_interval(self, stability: float, factor: float = 1.0) -> int:
        interval = stability * math.log(self.desired_retention) / _LN_090 * factor
        if not math.isfinite(interval):
            interval = self.maximum_interval
        return min(max(round(interval), 1), self.maximum_interval)

    def _next_difficulty(self, difficulty: float, rating: Rating) -> float:
        w = self.parameters
        delta = -w[6] * (rating - 3)
        damped = self._clamp_difficulty(difficulty + delta * (10 - difficulty) / 9)
        reverted = w[7] * self._initial_difficulty(Rating.Easy) + (1 - w[7]) * damped
        return self._clamp_difficulty(reverted)

    def _next_stability(
        self, difficulty: float, stability: float, retrievability: float, rating: Rating
    ) -> float:
        if rating == Rating.Again:
            next_stability = self._next_forget_stability(difficulty, stability, retrievability)
        else:
            next_stability = self._next_recall_stability(
                difficulty, stability, retrievability, rating
            )
        return self._clamp_stability(next_stability)

    def _next_forget_stability(
        self, difficulty: float, stability: float, retrievability: float
    ) -> float:
        w = self.parameters
        long_term = (
            w[11]
            * max(difficulty, MIN_DIFFICULTY) ** -w[12]
            * ((stability + 1) ** w[13] - 1)
            * math.e ** (w[14] * (1 - retrievability))
        )
        return min(stability, long_term)

    def _next_recall_stability(
        self, difficulty: float, stability: float, retrievability: float, rating: Rating
    ) -> float:
        w = self.parameters
        hard_penalty = w[15] if rating == Rating.Hard else 1
        easy_bonus = w[16] if rating == Rating.Easy else 1
        return stability * (
            1
            + math.e ** w[8]
            * (11 - difficulty)
            * stability ** -w[9]
            * (math.e ** (w[10] * (1 - retrievability)) - 1)
            * hard_penalty
            * easy_bonus
        )


def schedule(
    state: CardState,
    rating: Rating | int,
    now: datetime,
    parameters: Sequence[float] = DEFAULT_PARAMETERS,
    desired_retention: float = DEFAULT_DESIRED_RETENTION,
    maximum_interval: int = DEFAULT_MAXIMUM_INTERVAL,
) -> tuple[CardState, ReviewLogEntry]:
    """Schedule one review with the default learning configuration."""
    model = MemoryModel(
        parameters=parameters,
        desired_retention=desired_retention,
        maximum_interval=maximum_interval,
    )
    return model.schedule(state, rating, now)


def new_card_state(now: datetime) -> CardState:
    """A fresh state for a card that has never been studied."""
    return CardState(due=ensure_utc(now))
