from __future__ import annotations

import logging

from pydantic import ValidationError

from vitals.config import settings
from vitals.db import queries
from vitals.models.settings import AIProviderConfig, RepoSettings

logger = logging.getLogger(__name__)


async def load_settings(repo_id: int) -> RepoSettings:
    """Saved settings for a repo, or the defaults when none are stored."""
    raw = await queries.get_repo_settings(repo_id)
    if raw is None:
        return RepoSettings()
    try:
        return RepoSettings.model_validate_json(raw)
    except ValidationError:
        logger.exception("Stored settings for repo %d are invalid, using defaults", repo_id)
        return RepoSettings()


async def save_settings(repo_id: int, config: RepoSettings) -> RepoSettings:
    # A masked key coming back from the UI means "unchanged".
    if config.general.ai and _is_masked(config.general.ai.api_key):
        current = await load_settings(repo_id)
        previous = current.general.ai.api_key if current.general.ai else ""
        config.general.ai.api_key = previous
    await queries.save_repo_settings(repo_id, config.model_dump_json())
    return config


async def reset_settings(repo_id: int) -> RepoSettings:
    if await queries.delete_repo_settings(repo_id):
        logger.info("Settings for repo %d reset to defaults", repo_id)
    return RepoSettings()


def resolve_ai_config(config: RepoSettings) -> AIProviderConfig | None:
    """Repository AI config, falling back to the environment."""
    ai = config.general.ai
    if ai and ai.api_key:
        return ai
    if settings.ai_api_key:
        return AIProviderConfig(
            provider=settings.ai_provider,
            api_key=settings.ai_api_key,
            model=settings.ai_model,
        )
    return None


def mask_key(key: str) -> str:
    if not key:
        return ""
    if len(key) <= 8:
        return "****"
    return f"{key[:4]}****{key[-4:]}"


def _is_masked(key: str) -> bool:
    return "****" in key


def masked(config: RepoSettings) -> RepoSettings:
    copy = config.model_copy(deep=True)
    if copy.general.ai:
        copy.general.ai.api_key = mask_key(copy.general.ai.api_key)
    return copy
