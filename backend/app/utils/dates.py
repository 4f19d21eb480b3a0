"""Utility per intervalli di date su colonne timestamp"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


def start_of_day(day: date) -> datetime:
    """Mezzanotte UTC del giorno indicato"""
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def end_of_day_exclusive(day: date) -> datetime:
    """Mezzanotte UTC del giorno successivo (limite superiore escluso)"""
    return start_of_day(day + timedelta(days=1))


def day_bounds(from_date: Optional[date], to_date: Optional[date]) -> tuple[Optional[datetime], Optional[datetime]]:
    """Converte un intervallo di date inclusivo in [inizio, fine) su timestamp"""
    lower = start_of_day(from_date) if from_date else None
    upper = end_of_day_exclusive(to_date) if to_date else None
    return lower, upper
