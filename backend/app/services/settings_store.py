"""
Flat key/value settings backed by the ``settings`` table.

Credentials resolve environment first (via app.settings), then the table.
"""
from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import ConfigurationError
from app.models import AppSetting
from app.settings import get_settings

APIFY_TOKEN = "apify_token"
OPENAI_API_KEY = "openai_api_key"
GEMINI_API_KEY = "gemini_api_key"
GLOBAL_VIRALITY_THRESHOLD = "global_virality_threshold"
PUBLIC_BASE_URL = "public_base_url"

CREDENTIAL_KEYS = (APIFY_TOKEN, OPENAI_API_KEY, GEMINI_API_KEY)


async def get_value(session: AsyncSession, key: str, default: str | None = None) -> str | None:
    row = await session.get(AppSetting, key)
    if row is None:
        return default
    return row.value


async def set_value(session: AsyncSession, key: str, value: str) -> None:
    row = await session.get(AppSetting, key)
    if row is None:
        row = AppSetting(key=key, value=value)
    else:
        row.value = value
    session.add(row)
    await session.commit()


async def get_credential(session: AsyncSession, key: str) -> str:
    """Environment override, then stored value; raises when neither exists."""
    env_value = getattr(get_settings(), key, None)
    if env_value:
        return env_value
    stored = await get_value(session, key)
    if stored:
        return stored
    raise ConfigurationError(f'Credential "{key}" not configured. Set {key.upper()} or the "{key}" setting.')


async def get_public_base_url(session: AsyncSession) -> str:
    stored = await get_value(session, PUBLIC_BASE_URL)
    if stored:
        return stored.rstrip("/")
    settings = get_settings()
    if settings.public_base_url:
        return settings.public_base_url.rstrip("/")
    # Not reachable by the publishing platform; only useful locally
    return f"http://localhost:{settings.port}"
