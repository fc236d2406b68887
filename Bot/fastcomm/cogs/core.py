# ==========================================
# fastcomm/cogs/core.py
# Core lifecycle events
#
# Responsibilities:
# - Load fast commission settings once the bot is connected
# - Sync slash commands (public ones globally, admin ones
#   to the admin guild only)
# ==========================================

import logging

import discord
from discord.ext import commands

from fastcomm.services.errors import RepositoryError

logger = logging.getLogger(__name__)


class CoreCog(commands.Cog):
    """
    Cog handling startup work that needs a connected bot.

    on_ready can fire again after a reconnect; the work here runs once.
    """

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.services = bot.services
        self._ready_once = False

    @commands.Cog.listener()
    async def on_ready(self):
        logger.info("%s is online!", self.bot.user)
        if self._ready_once:
            return
        self._ready_once = True

        try:
            await self.services.fast_settings.load()
        except RepositoryError as e:
            logger.error("❌ Could not load fast commission settings, using defaults: %s", e)

        try:
            synced = await self.bot.tree.sync()
            logger.info("✅ Synced %d global command(s)", len(synced))

            guild_id = self.services.settings.admin_guild_id
            if guild_id:
                admin = await self.bot.tree.sync(guild=discord.Object(id=guild_id))
                logger.info("✅ Synced %d admin command(s) to guild %s", len(admin), guild_id)
        except discord.HTTPException as e:
            logger.error("❌ Command sync failed: %s", e)


async def setup(bot: commands.Bot):
    """
    Required setup hook for discord.py extension loader.
    """
    await bot.add_cog(CoreCog(bot))
