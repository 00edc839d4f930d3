"""Session, accuracy, daily and streak statistics derived from the review log."""
from collections import OrderedDict
from datetime import date, datetime, timedelta
from typing import Iterable

from flashdeck.models import DailyStat, Review, StudySession, StudySessionStats
from flashdeck.store import CardStore


def calc_accuracy(correct: int, total: int) -> float:
    if not total:
        return 0.0
    return (correct / total) * 100


def session_stats(session: StudySession, reviews: Iterable[Review] = ()) -> StudySessionStats:
    """Summary of one session from its counters and its review records."""
    reviews = list(reviews)
    studied = session.cards_studied
    return StudySessionStats(
        total_cards=studied,
        correct_cards=session.cards_correct,
        accuracy=calc_accuracy(session.cards_correct, studied),
        average_time=session.total_time_seconds / studied if studied else 0.0,
        new_cards=sum(1 for r in reviews if r.previous_repetitions == 0),
        review_cards=sum(1 for r in reviews if r.previous_repetitions > 0),
        learning_cards=sum(1 for r in reviews if r.quality < 3),
    )


def daily_stats(reviews: Iterable[Review]) -> list[DailyStat]:
    """Review count and accuracy per calendar date, oldest first."""
    buckets = OrderedDict()
    for review in sorted(reviews, key=lambda r: r.reviewed_at):
        day = review.reviewed_at.date().isoformat()
        total, correct = buckets.get(day, (0, 0))
        buckets[day] = (total + 1, correct + (1 if review.is_correct else 0))
    return [
        DailyStat(date=day, reviews=total, accuracy=calc_accuracy(correct, total))
        for day, (total, correct) in buckets.items()
    ]


def calc_streak(review_dates: Iterable[date], today: date | None = None) -> int:
    """Consecutive days with reviews, walking back from today.

    A today without reviews yet does not break a streak that runs through
    yesterday.
    """
    today = today or date.today()
    days = set(review_dates)
    check = today if today in days else today - timedelta(days=1)
    streak = 0
    while check in days:
        streak += 1
        check -= timedelta(days=1)
    return streak


def get_study_analytics(store: CardStore, days: int = 30, now: datetime | None = None) -> dict:
    now = now or datetime.now()
    since = datetime.combine(now.date() - timedelta(days=days), datetime.min.time())
    reviews = store.list_reviews(since=since, until=now)
    correct = sum(1 for r in reviews if r.is_correct)
    return {
        "total_reviews": len(reviews),
        "accuracy": round(calc_accuracy(correct, len(reviews)), 1),
        "streak": calc_streak(store.list_review_dates(), now.date()),
        "daily_stats": daily_stats(reviews),
    }
