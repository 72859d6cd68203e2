"""Constants and formulas for the file popularity moving average."""

VERSION = "1.2.0"

MINUTE = 60.0
HOUR = 60.0 * MINUTE
DAY = 24.0 * HOUR
WEEK = 7.0 * DAY

# y[n] = MULTIPLIER * x / damping + (1 - 1 / damping) * y[n-1]
# where x is the file usage frequency in accesses per second.
START_DAMPING = 50000.0
DAMPING = 1000000.0
MULTIPLIER = 3600.0
REACH_FULL_DAMPING_AFTER = 1.0 * WEEK
SLOPE = (DAMPING - START_DAMPING) / REACH_FULL_DAMPING_AFTER

# Initial usage for new files, in accesses per second (40 h per week).
AVG_USAGE = 0.238

INITIAL_POPULARITY = MULTIPLIER * AVG_USAGE


def damping_for_age(average_period_age: float, period_seconds: float) -> float:
    """Return the damping factor for a file of the given average age over a period."""
    return min(average_period_age * SLOPE + START_DAMPING, DAMPING) / period_seconds


def next_popularity(
    previous: float, access_count: int, period_seconds: float, age_seconds: float
) -> float:
    """Return the new popularity after ``access_count`` accesses over a period.

    ``age_seconds`` is the time since the file's ctime at the end of the period.
    A non-positive period leaves the popularity unchanged.
    """
    if period_seconds <= 0.0:
        return previous
    usage_frequency = access_count / period_seconds if access_count else 0.0
    average_period_age = age_seconds + period_seconds / 2.0
    damping = damping_for_age(average_period_age, period_seconds)
    return MULTIPLIER * usage_frequency / damping + (1.0 - 1.0 / damping) * previous