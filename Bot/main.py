# main.py
# -------------------------------------------------
# Application entry point for the FastComm Discord bot.
#
# Responsibilities of this file:
# - Configure logging
# - Create the Discord bot instance (and its shared services)
# - Load all bot extensions (cogs)
# - Start and gracefully shut down the bot
#
# This file should NOT contain:
# - Discord command logic
# - Business logic (commission maths, Jotform, Drive, GitHub, etc.)
# -------------------------------------------------

import asyncio
import logging

import discord

from config import SETTINGS
from bot_factory import create_bot

logger = logging.getLogger(__name__)


async def main():
    """
    Main async entrypoint for the bot.

    Flow:
    1. Configure logging (one handler for discord.py, aiohttp and services)
    2. Create the bot instance
    3. Load all required cogs/extensions
    4. Start the bot and handle graceful shutdown
    """
    discord.utils.setup_logging(level=logging.INFO, root=True)

    if not SETTINGS.token:
        logger.error("❌ TOKEN is not set; refusing to start.")
        return

    # Create the Discord bot with intents and shared services
    bot = create_bot()

    # -------------------------
    # Core / infrastructure cogs
    # -------------------------

    # Core lifecycle events (on_ready, settings load, command sync)
    await bot.load_extension("fastcomm.cogs.core")

    # Jotform webhook HTTP server (same event loop as the bot)
    await bot.load_extension("fastcomm.cogs.webhook")

    # -------------------------
    # Submission features
    # -------------------------

    # /fast-comm-submission multi-step flow
    await bot.load_extension("fastcomm.cogs.submission")

    # /check-my-upload
    await bot.load_extension("fastcomm.cogs.my_uploads")

    # /admin-action operator tools
    await bot.load_extension("fastcomm.cogs.admin")

    # Automated daily XLSX backups
    await bot.load_extension("fastcomm.cogs.backup")

    # -------------------------
    # Bot startup / shutdown
    # -------------------------
    try:
        # Connect to Discord and start processing events
        await bot.start(SETTINGS.token)

    finally:
        # Ensure aiohttp sessions, webhook server and websocket are closed
        if not bot.is_closed():
            await bot.close()


# Standard Python entrypoint guard
# Ensures this file is only executed directly
if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        # Allows clean Ctrl+C shutdown without noisy stacktraces
        pass
