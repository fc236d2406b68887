# config.py
# -------------------------------------------------
# Central configuration module for the FastComm bot.
#
# Responsibilities:
# - Load environment variables (.env)
# - Define strongly-typed application settings
# - Configure Discord intents
# - Resolve deployment-dependent values (public webhook URL,
#   Google OAuth client)
#
# This file should ONLY contain configuration and setup.
# No business logic or Discord command logic belongs here.
# -------------------------------------------------

import json
import logging
import os
from dataclasses import dataclass
from typing import Mapping

import discord
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Load environment variables from .env file (if present)
# This allows secrets like TOKEN to be kept out of source control
load_dotenv()

WEBHOOK_PATH = "/webhook/jotform"


@dataclass(frozen=True)
class Settings:
    """
    Immutable application configuration.

    Values are loaded from environment variables with safe defaults
    where appropriate.
    """
    token: str

    # Discord
    notification_channel_id: int | None
    backup_channel_name: str
    admin_guild_id: int | None
    admin_user_ids: frozenset[int]
    admin_role_id: int | None

    # GitHub backup repository
    github_token: str
    github_owner: str
    github_repo: str
    github_backup_path: str

    # Jotform + webhook server
    jotform_api_key: str
    jotform_template_id: str
    webhook_url: str
    webhook_host: str
    port: int

    # Google Drive (company account)
    google_client_id: str
    google_client_secret: str
    drive_refresh_token: str

    display_timezone: str
    status_recheck_seconds: float


def _int_or_none(value: str | None) -> int | None:
    value = (value or "").strip()
    return int(value) if value.isdigit() else None


def _id_set(value: str | None) -> frozenset[int]:
    return frozenset(int(part) for part in (value or "").split(",") if part.strip().isdigit())


def _float(value: str | None, default: float) -> float:
    try:
        return float(value) if value else default
    except ValueError:
        return default


def resolve_webhook_url(env: Mapping[str, str]) -> str:
    """
    Public URL Jotform should post submissions to.

    WEBHOOK_URL wins; otherwise the URL is derived from the hosting
    platform's variables. Empty when nothing is known (webhook disabled,
    status checks still work).
    """
    explicit = env.get("WEBHOOK_URL", "").strip()
    if explicit:
        return explicit

    if env.get("PUBLIC_URL"):
        base = f"https://{env['PUBLIC_URL']}"
    elif env.get("REPL_SLUG") and env.get("REPL_OWNER"):
        base = f"https://{env['REPL_SLUG']}.{env['REPL_OWNER']}.repl.co"
    elif env.get("VERCEL_URL"):
        base = f"https://{env['VERCEL_URL']}"
    elif env.get("RAILWAY_PUBLIC_DOMAIN"):
        base = f"https://{env['RAILWAY_PUBLIC_DOMAIN']}"
    elif env.get("RENDER_EXTERNAL_URL"):
        base = env["RENDER_EXTERNAL_URL"]
    else:
        return ""
    return base.rstrip("/") + WEBHOOK_PATH


def load_oauth_client(raw: str | None) -> tuple[str, str]:
    """
    (client_id, client_secret) from a Google OAuth client JSON.

    Both the "web" and "installed" client shapes are accepted.
    """
    if not raw:
        return "", ""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.error("❌ GOOGLE_OAUTH_SECRETS is not valid JSON")
        return "", ""

    client = data.get("web") or data.get("installed") or data
    return client.get("client_id", ""), client.get("client_secret", "")


def load_settings(env: Mapping[str, str] = os.environ) -> Settings:
    client_id, client_secret = load_oauth_client(env.get("GOOGLE_OAUTH_SECRETS"))

    return Settings(
        # Discord bot token (REQUIRED)
        token=env.get("TOKEN", ""),

        # Channel receiving "submission completed" announcements
        notification_channel_id=_int_or_none(env.get("NOTIFICATION_CHANNEL_ID")),

        # Channel used for automatic XLSX backups
        backup_channel_name=env.get("BACKUP_CHANNEL_NAME", "fastcomm-backup"),

        # Operator allowlist for /admin-action
        admin_guild_id=_int_or_none(env.get("ADMIN_GUILD_ID")),
        admin_user_ids=_id_set(env.get("ADMIN_USER_IDS")),
        admin_role_id=_int_or_none(env.get("ADMIN_ROLE_ID")),

        github_token=env.get("GITHUB_PAT", ""),
        github_owner=env.get("GITHUB_OWNER", ""),
        github_repo=env.get("GITHUB_REPO", ""),
        github_backup_path=env.get("GITHUB_BACKUP_PATH", "backups"),

        jotform_api_key=env.get("JOTFORM_API_KEY", ""),
        jotform_template_id=env.get("JOTFORM_TEMPLATE_ID", ""),
        webhook_url=resolve_webhook_url(env),
        webhook_host=env.get("WEBHOOK_HOST", "0.0.0.0"),
        port=_int_or_none(env.get("PORT")) or 5000,

        google_client_id=client_id,
        google_client_secret=client_secret,
        drive_refresh_token=env.get("COMPANY_DRIVE_REFRESH_TOKEN", ""),

        display_timezone=env.get("DISPLAY_TIMEZONE", "Asia/Singapore"),
        status_recheck_seconds=_float(env.get("STATUS_RECHECK_SECONDS"), 30.0),
    )


# Global settings instance used throughout the bot
# Accessed as: SETTINGS.token, SETTINGS.github_repo, etc.
SETTINGS = load_settings()


# -------------------------------------------------
# Discord Intents
# -------------------------------------------------
# The bot only uses slash commands and components, so the
# default intents are enough (no message_content needed).

INTENTS = discord.Intents.default()
