"""Statistics document — the composite "wrapped" payload served to the UI.

Serialized with camelCase keys (``model_dump(by_alias=True)``); the same JSON
is what the stats cache stores.
"""

from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MediaTypeSplit(CamelModel):
    movies: int = 0
    shows: int = 0


class TitleYear(CamelModel):
    title: str
    year: int


class CastEntry(CamelModel):
    actor: str
    count: int
    time: int
    titles: list[str] = []
    image_url: Optional[str] = None


class GenreShare(CamelModel):
    genre: str
    percentage: int


class Decade(CamelModel):
    decade: str = "N/A"
    count: int = 0


class PlatformCount(CamelModel):
    platform: str
    count: int


class TechStats(CamelModel):
    total_data_gb: int = Field(0, alias="totalDataGB")
    transcode_percent: int = 0
    top_platforms: list[PlatformCount] = []


class CommitmentIssues(CamelModel):
    count: int = 0
    titles: list[str] = []


class BingeRecord(CamelModel):
    show: str
    count: int
    date: str


class DayHours(CamelModel):
    day: str
    short: str
    hours: int


class LazyDay(CamelModel):
    winner: DayHours
    chart_data: list[DayHours]


class BucketValue(CamelModel):
    label: str
    value: int


class ActivityType(CamelModel):
    winner: str
    description: str
    breakdown: list[BucketValue]


class LongestBreak(CamelModel):
    title: str
    days: int


class TitleCount(CamelModel):
    title: str
    count: int


class LabelledSeconds(CamelModel):
    seconds: int
    label: str


class LeaderboardEntry(CamelModel):
    label: str
    seconds: int
    is_you: bool


class Comparison(CamelModel):
    you: LabelledSeconds
    average: LabelledSeconds
    top: LabelledSeconds
    bottom: LabelledSeconds
    leaderboard: list[LeaderboardEntry] = []


class Period(CamelModel):
    start: date
    end: date


class StatisticsDocument(CamelModel):
    total_duration: str
    total_seconds: int
    media_type_split: MediaTypeSplit
    total_bandwidth: int = 0

    oldest_movie: Optional[TitleYear] = None
    oldest_show: Optional[TitleYear] = None

    top_cast: list[CastEntry] = []
    genre_wheel: list[GenreShare] = []
    time_traveler: Decade = Decade()
    average_year: int
    tech_stats: TechStats = TechStats()
    commitment_issues: CommitmentIssues = CommitmentIssues()
    binge_record: Optional[BingeRecord] = None

    lazy_day: LazyDay
    activity_type: ActivityType
    longest_break: Optional[LongestBreak] = None
    top_show_by_episodes: Optional[TitleCount] = None

    value_proposition: int = 0
    penalty_value: int = 0

    comparison: Comparison
    ai_summary: Optional[str] = None
    period: Period

    def summary_context(self) -> dict:
        """The document as handed to text generation: no AI, peer or period fields."""
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude={"ai_summary", "comparison", "period"},
        )
