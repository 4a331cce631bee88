"""AI roast — free text generated from a finished statistics document."""

import json
import logging
from typing import Callable, Optional

from plexwrapped.clients.llm import LlmClient
from plexwrapped.errors import AIGenerationFailure
from plexwrapped.models.tables import AiConfig
from plexwrapped.schemas import StatisticsDocument

logger = logging.getLogger(__name__)

PLACEHOLDER = "AI Summary unavailable (Error generated)."

DEFAULT_INSTRUCTIONS = (
    "Analyze the user's Plex statistics and produce a brutally honest /r/roastme-style roast. "
    "Be mean, dry, and sarcastic. No empathy, no disclaimers, no praise unless it is immediately "
    "undercut. Treat the stats as evidence of bad habits, questionable taste, avoidance of sleep, "
    "commitment issues, nostalgia addiction, or fake \"good taste.\" If data is missing, infer "
    "something unflattering. Write one or two short paragraphs that summarize the user as a person "
    "based solely on their viewing behavior. No emojis, no self-reference, no moral lessons. Roast "
    "choices and habits only, not protected traits. The result should be funny, uncomfortable, and "
    "very shareable."
)

LlmFactory = Callable[[AiConfig], LlmClient]


def should_generate(config: Optional[AiConfig], has_data: bool, force_refresh: bool) -> bool:
    if config is None or not config.enabled or not config.api_key:
        return False
    return has_data or force_refresh


def build_prompt(document: StatisticsDocument, user_id: int, year: int) -> str:
    context = {"user": {"id": user_id, "year": year}, **document.summary_context()}
    return (
        f"Here are the user's stats for the year: {json.dumps(context)}. "
        "Write a short summary paragraph."
    )


async def generate_summary(
    config: AiConfig,
    document: StatisticsDocument,
    user_id: int,
    year: int,
    llm_factory: LlmFactory = LlmClient.from_config,
) -> str:
    """Roast text, or the placeholder when generation fails."""
    client = llm_factory(config)
    try:
        return await client.complete(config.instructions or DEFAULT_INSTRUCTIONS, build_prompt(document, user_id, year))
    except AIGenerationFailure as e:
        logger.warning(f"AI summary for user {user_id} failed: {e}")
        return PLACEHOLDER
