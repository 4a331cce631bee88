"""Peer leaderboard — everyone's watch time, anonymized except for the caller."""

from dataclasses import dataclass
from typing import Optional, Sequence

from plexwrapped.schemas import Comparison, LabelledSeconds, LeaderboardEntry

GOD_TIER = [
    "The Server Load", "Vitamin D Deficient", "The Retina Burner", "Premium Bandwidth Hog",
    "CEO of Binging", "The Electricity Bill", "Couch Fossil", "The 4K Connoisseur",
    "No Life Detected", "The Main Character",
]
HIGH_TIER = [
    "The Binge-Watcher", "Content Sommelier", "Professional Procrastinator", "Sleep Deprived",
    "The Marathon Runner", "Remote Control Dictator", "Subtitle Scholar", "WiFi Warrior",
    "Pixel Perfect", "The Introvert",
]
MID_TIER = [
    "The Normie", "Casual Friday", "The 'Just One Episode' Liar", "Healthy Social Life (Sarcastically)",
    "The NPC", "Weekend Warrior", "Background Noise Expert", "The 720p Enjoyer",
    "Buffer Buddy", "Average Joe",
]
LOW_TIER = [
    "The Tourist", "Touching Grass", "The Monthly Login", "Forgotten Password",
    "The Guest Account", "Are You Still Watching?", "The Trailer Watcher",
    "Dial-Up Survivor", "The Lurker", "Participation Trophy",
]
FREELOADER_TIER = [
    "The Freeloader", "Waste of a Seat", "Plex Pass Denier", "The Ghost",
    "Who Is This?", "Bandwidth Savior", "Log In, Log Out", "The Myth",
    "404 User Not Found", "Lowest of Them All",
]

YOU = "You"


@dataclass
class PeerTotal:
    user_id: int
    seconds: int


def tier_for(index: int, count: int, seconds: int) -> list[str]:
    """Label pool for the peer at ``index`` of a descending ranking."""
    if seconds == 0:
        return FREELOADER_TIER
    pct = 1 - index / count
    if pct >= 0.9:
        return GOD_TIER
    if pct >= 0.7:
        return HIGH_TIER
    if pct >= 0.25:
        return MID_TIER
    return LOW_TIER


def flavor_label(user_id: int, tier: list[str]) -> str:
    """Stable anonymized name: the same user keeps the same name within a tier."""
    return tier[user_id % len(tier)]


def build_comparison(caller_id: int, caller_seconds: int, peers: Sequence[PeerTotal]) -> Comparison:
    """Rank every user by watch time and label each entry.

    ``peers`` holds every known user, including those with no history.
    Equal totals keep the order of ``peers``.
    """
    ranked = sorted(peers, key=lambda p: p.seconds, reverse=True)

    entries: list[LeaderboardEntry] = []
    for index, peer in enumerate(ranked):
        if peer.user_id == caller_id:
            entries.append(LeaderboardEntry(label=YOU, seconds=peer.seconds, is_you=True))
            continue
        label = flavor_label(peer.user_id, tier_for(index, len(ranked), peer.seconds))
        entries.append(LeaderboardEntry(label=label, seconds=peer.seconds, is_you=False))

    average = round(sum(p.seconds for p in ranked) / len(ranked)) if ranked else 0
    top: Optional[LeaderboardEntry] = entries[0] if entries else None
    bottom: Optional[LeaderboardEntry] = entries[-1] if entries else None

    return Comparison(
        you=LabelledSeconds(seconds=caller_seconds, label=YOU),
        average=LabelledSeconds(seconds=average, label="Average"),
        top=LabelledSeconds(seconds=top.seconds, label=top.label) if top else LabelledSeconds(seconds=0, label="None"),
        bottom=LabelledSeconds(seconds=bottom.seconds, label=bottom.label) if bottom else LabelledSeconds(seconds=0, label="None"),
        leaderboard=entries,
    )
