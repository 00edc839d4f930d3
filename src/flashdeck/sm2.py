"""SM-2 spaced repetition algorithm."""
import math
from datetime import date, timedelta

from flashdeck.errors import InvariantViolation
from flashdeck.models import CardStatus, MIN_EASE_FACTOR

# Ratings exposed by the study buttons. 2 is unused and 5 is
# accepted for completeness.
AGAIN = 0
HARD = 1
GOOD = 3
EASY = 4
PERFECT = 5

PASSING_QUALITY = 3


def round_half_up(value: float) -> int:
    """Round .5 away from zero, unlike the built-in banker's rounding."""
    return int(math.floor(value + 0.5))


def _check_inputs(quality: int, repetitions: int, ease_factor: float, interval: int) -> None:
    if not 0 <= quality <= 5:
        raise InvariantViolation(f"quality must be 0-5, got {quality}")
    if ease_factor < MIN_EASE_FACTOR:
        raise InvariantViolation(f"ease factor {ease_factor} below floor {MIN_EASE_FACTOR}")
    if interval < 0:
        raise InvariantViolation(f"negative interval {interval}")
    if repetitions < 0:
        raise InvariantViolation(f"negative repetitions {repetitions}")


def sm2_update(
    quality: int,
    repetitions: int,
    ease_factor: float,
    interval: int,
    today: date | None = None,
) -> dict:
    """Calculate next review parameters using SM-2.

    Args:
        quality: Rating 0-5 (0=complete blackout, 5=perfect)
        repetitions: Number of consecutive correct reviews
        ease_factor: Current ease factor (minimum 1.3)
        interval: Current interval in days
        today: Reference date for next_review, defaults to date.today()

    Returns:
        Dict with updated interval, repetitions, ease_factor and next_review.
    """
    _check_inputs(quality, repetitions, ease_factor, interval)
    if today is None:
        today = date.today()

    if quality >= PASSING_QUALITY:
        # Correct response
        new_repetitions = repetitions + 1
        if new_repetitions == 1:
            new_interval = 1
        elif new_repetitions == 2:
            new_interval = 6
        else:
            new_interval = round_half_up(interval * ease_factor)
        new_ef = ease_factor + (0.1 - (5 - quality) * (0.08 + (5 - quality) * 0.02))
        new_ef = max(MIN_EASE_FACTOR, new_ef)
    else:
        # Incorrect: reset, ease untouched
        new_repetitions = 0
        new_interval = 1
        new_ef = ease_factor

    return {
        "interval": new_interval,
        "repetitions": new_repetitions,
        "ease_factor": round(new_ef, 2),
        "next_review": today + timedelta(days=new_interval),
    }


def determine_status(repetitions: int, quality: int) -> CardStatus:
    """Status after a review, given the updated repetition count."""
    if quality < PASSING_QUALITY:
        return CardStatus.LEARNING
    if repetitions < 2:
        return CardStatus.LEARNING
    elif repetitions < 5:
        return CardStatus.REVIEW
    return CardStatus.MATURE
