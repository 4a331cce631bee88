"""Aggregation passes over a user's watch history for one period.

Every pass is a pure function of the period's rows (ordered by start time,
then id) and returns one field of the StatisticsDocument. Weekday and hour
come from the stored local ``started_at``, never from SQL date functions.
"""

from collections import Counter
from datetime import datetime
from typing import Optional, Sequence

from plexwrapped.models.tables import WatchHistory
from plexwrapped.schemas import (
    ActivityType, BingeRecord, BucketValue, CastEntry, CommitmentIssues,
    DayHours, Decade, GenreShare, LazyDay, LongestBreak, MediaTypeSplit,
    PlatformCount, TechStats, TitleCount, TitleYear,
)

Rows = Sequence[WatchHistory]

TOP_CAST_LIMIT = 5
TOP_GENRE_LIMIT = 5
TOP_PLATFORM_LIMIT = 5
COMMITMENT_THRESHOLD = 20      # percent
COMMITMENT_TITLE_CAP = 50
BINGE_GAP_SECONDS = 20 * 60
MIN_PLAUSIBLE_YEAR = 1800

# Time-of-day buckets by start hour
MORNING_HOURS = range(5, 11)
DAY_HOURS = range(11, 22)
BALANCED_VARIANCE = 0.15
DOMINANT_THRESHOLD = 0.50
MORNING_THRESHOLD = 0.40

PRICE_PER_MOVIE = 12.00
PRICE_PER_SUBSCRIPTION_MONTH = 15.49
SHOW_HOURS_PER_MONTH = 10.0
PENALTY_PER_TITLE = 150_000

WEEKDAYS = [
    ("Monday", "Mon"), ("Tuesday", "Tue"), ("Wednesday", "Wed"), ("Thursday", "Thu"),
    ("Friday", "Fri"), ("Saturday", "Sat"), ("Sunday", "Sun"),
]


def split_list(value: Optional[str]) -> list[str]:
    """Comma-joined column → trimmed, non-empty names."""
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


# ── Totals ───────────────────────────────────────────────────────

def human_duration(seconds: int) -> str:
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m"


def media_split(rows: Rows) -> MediaTypeSplit:
    movies = sum(r.duration or 0 for r in rows if r.media_type == "movie")
    shows = sum(r.duration or 0 for r in rows if r.media_type == "episode")
    return MediaTypeSplit(movies=movies, shows=shows)


def total_bandwidth(rows: Rows) -> int:
    return sum(r.file_size or 0 for r in rows)


# ── Oldest by kind ───────────────────────────────────────────────

def oldest(rows: Rows, media_type: str) -> Optional[TitleYear]:
    """Oldest release among rows of one kind; shows report the series title."""
    candidates = [
        r for r in rows
        if r.media_type == media_type and r.year is not None and r.year > MIN_PLAUSIBLE_YEAR
    ]
    if not candidates:
        return None
    row = min(candidates, key=lambda r: r.year)
    title = row.grandparent_title if media_type == "episode" else row.title
    return TitleYear(title=title or row.title or "Unknown", year=row.year)


# ── Top cast ─────────────────────────────────────────────────────

def top_cast(rows: Rows, limit: int = TOP_CAST_LIMIT) -> list[CastEntry]:
    """Actors ranked by the number of distinct projects they appeared in.

    A project is the movie, or the series for an episode. Each actor is
    credited once per event; equal counts keep first-seen order.
    """
    projects: dict[str, set[str]] = {}
    seconds: dict[str, int] = {}

    for row in rows:
        cast = split_list(row.actors)
        if not cast:
            continue
        project = (row.grandparent_title or row.title) if row.media_type == "episode" else row.title
        for actor in dict.fromkeys(cast):
            projects.setdefault(actor, set()).add(project or "")
            seconds[actor] = seconds.get(actor, 0) + (row.duration or 0)

    ranked = sorted(projects.items(), key=lambda item: len(item[1]), reverse=True)
    return [
        CastEntry(actor=actor, count=len(titles), time=seconds[actor], titles=sorted(titles))
        for actor, titles in ranked[:limit]
    ]


# ── Genres and eras ──────────────────────────────────────────────

def genre_wheel(rows: Rows, limit: int = TOP_GENRE_LIMIT) -> list[GenreShare]:
    """Share of genre tag occurrences, counted per event rather than per title."""
    counts: Counter[str] = Counter()
    for row in rows:
        counts.update(split_list(row.genres))
    total = sum(counts.values())
    if not total:
        return []
    return [
        GenreShare(genre=g, percentage=round(c / total * 100))
        for g, c in counts.most_common(limit)
    ]


def time_traveler(rows: Rows) -> Decade:
    counts = Counter(f"{(r.year // 10) * 10}s" for r in rows if r.year)
    if not counts:
        return Decade()
    decade, count = counts.most_common(1)[0]
    return Decade(decade=decade, count=count)


def average_year(rows: Rows, default: int) -> int:
    years = [r.year for r in rows if r.year is not None]
    if not years:
        return default
    return round(sum(years) / len(years))


# ── Device & transcode ───────────────────────────────────────────

def tech_stats(rows: Rows, limit: int = TOP_PLATFORM_LIMIT) -> TechStats:
    plays = len(rows)
    transcodes = sum(1 for r in rows if r.transcode_decision == "transcode")
    players = Counter(r.player for r in rows if r.player)
    return TechStats(
        total_data_gb=round(total_bandwidth(rows) / 1024 ** 3),
        transcode_percent=round(transcodes / plays * 100) if plays else 0,
        top_platforms=[PlatformCount(platform=p, count=c) for p, c in players.most_common(limit)],
    )


# ── Low commitment ───────────────────────────────────────────────

def commitment_issues(rows: Rows) -> CommitmentIssues:
    abandoned = [
        r for r in rows
        if r.media_type == "movie" and (r.percent_complete or 0) < COMMITMENT_THRESHOLD
    ]
    return CommitmentIssues(
        count=len(abandoned),
        titles=[r.title or "Unknown" for r in abandoned[:COMMITMENT_TITLE_CAP]],
    )


# ── Binge streak ─────────────────────────────────────────────────

def binge_record(rows: Rows) -> Optional[BingeRecord]:
    """Longest run of back-to-back episodes of one series.

    The next episode must start at or after the previous one ended and less
    than 20 minutes later. The first run reaching the maximum length wins.
    """
    episodes = [r for r in rows if r.media_type == "episode" and r.grandparent_rating_key]
    if not episodes:
        return None

    best_count, best_row = 0, None
    streak = 1
    for prev, curr in zip(episodes, episodes[1:]):
        if curr.grandparent_rating_key == prev.grandparent_rating_key:
            gap = (curr.started_at - prev.started_at).total_seconds() - (prev.duration or 0)
            if 0 <= gap < BINGE_GAP_SECONDS:
                streak += 1
                continue
        if streak > best_count:
            best_count, best_row = streak, prev
        streak = 1

    if streak > best_count:
        best_count, best_row = streak, episodes[-1]

    if best_count <= 1 or best_row is None:
        return None
    return BingeRecord(
        show=best_row.grandparent_title or "",
        count=best_count,
        date=best_row.started_at.date().isoformat(),
    )


# ── Day of week ──────────────────────────────────────────────────

def lazy_day(rows: Rows) -> LazyDay:
    """Hours per weekday, Monday first; ties go to the earlier weekday."""
    seconds = [0] * 7
    for row in rows:
        seconds[row.started_at.weekday()] += row.duration or 0

    chart = [
        DayHours(day=name, short=short, hours=round(total / 3600))
        for (name, short), total in zip(WEEKDAYS, seconds)
    ]
    winner = max(chart, key=lambda d: d.hours)
    return LazyDay(winner=winner, chart_data=chart)


# ── Time of day ──────────────────────────────────────────────────

def _bucket(started: datetime) -> str:
    if started.hour in MORNING_HOURS:
        return "morning"
    if started.hour in DAY_HOURS:
        return "day"
    return "night"


def classify_viewer(morning: float, day: float, night: float) -> tuple[str, str]:
    """Viewer archetype from bucket shares. Checks run in a fixed order."""
    if max(morning, day, night) - min(morning, day, night) < BALANCED_VARIANCE:
        return "The Zen Master", "Perfect harmony. You watch content when you want, without bias."
    if night > DOMINANT_THRESHOLD:
        return "The Vampire", "The sun is your enemy. Screen time increases as the world goes dark."
    if day > DOMINANT_THRESHOLD:
        return "The Daydreamer", "You max out your entertainment while the sun is up."
    if morning > MORNING_THRESHOLD:
        return "The Early Bird", "Cartoons with cereal? You start your day with a play button."
    if day > night:
        return "The Daytime Dweller", "You prefer the light, but you aren't afraid of the dark."
    return "The Night Owl", "You lean towards the evening, but aren't fully nocturnal yet."


def activity_type(rows: Rows) -> ActivityType:
    totals = {"morning": 0, "day": 0, "night": 0}
    for row in rows:
        totals[_bucket(row.started_at)] += row.duration or 0

    overall = sum(totals.values()) or 1
    winner, description = classify_viewer(
        totals["morning"] / overall, totals["day"] / overall, totals["night"] / overall,
    )
    return ActivityType(
        winner=winner,
        description=description,
        breakdown=[
            BucketValue(label="Morning", value=totals["morning"]),
            BucketValue(label="Day", value=totals["day"]),
            BucketValue(label="Night", value=totals["night"]),
        ],
    )


# ── Longest pause ────────────────────────────────────────────────

def longest_break(rows: Rows) -> Optional[LongestBreak]:
    """Widest first-to-last spread of any item played more than once."""
    plays: dict[str, list[WatchHistory]] = {}
    for row in rows:
        if row.rating_key:
            plays.setdefault(row.rating_key, []).append(row)

    best: Optional[tuple[float, WatchHistory]] = None
    for group in plays.values():
        if len(group) < 2:
            continue
        starts = [r.started_at for r in group]
        spread = (max(starts) - min(starts)).total_seconds()
        if best is None or spread > best[0]:
            best = (spread, group[0])

    if best is None:
        return None
    days = int(best[0] // 86400)
    if days < 1:
        return None
    row = best[1]
    return LongestBreak(title=row.grandparent_title or row.title or "Unknown", days=days)


# ── Most replayed series ─────────────────────────────────────────

def top_show_by_episodes(rows: Rows) -> Optional[TitleCount]:
    counts = Counter(r.grandparent_title or "Unknown" for r in rows if r.media_type == "episode")
    if not counts:
        return None
    title, count = counts.most_common(1)[0]
    return TitleCount(title=title, count=count)


# ── Monetary ─────────────────────────────────────────────────────

def value_proposition(rows: Rows) -> int:
    """What the period's viewing would have cost: purchases plus subscription months."""
    movies = {r.rating_key for r in rows if r.media_type == "movie"}
    show_hours = media_split(rows).shows / 3600
    return round(
        len(movies) * PRICE_PER_MOVIE
        + (show_hours / SHOW_HOURS_PER_MONTH) * PRICE_PER_SUBSCRIPTION_MONTH
    )


def penalty_value(rows: Rows) -> int:
    movies = {r.rating_key for r in rows if r.media_type == "movie"}
    episodes = {r.rating_key for r in rows if r.media_type == "episode"}
    return (len(movies) + len(episodes)) * PENALTY_PER_TITLE
