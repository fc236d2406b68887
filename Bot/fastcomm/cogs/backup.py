# ==========================================
# fastcomm/cogs/backup.py
# Automated XLSX backups of persisted submissions
#
# Responsibilities:
# - Once a day, export every submission record to XLSX
# - Upload the file to the configured backup channel
#
# All workbook building is delegated to ExportService.
# ==========================================

import asyncio
import logging
import os
import tempfile

import discord
from discord.ext import commands, tasks

from fastcomm.services.errors import RepositoryError

logger = logging.getLogger(__name__)


class BackupCog(commands.Cog):
    """
    Cog responsible for scheduled submission backups.

    This cog runs autonomously once loaded.
    """

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.services = bot.services

    # --------------------------------------
    # Lifecycle: start background tasks
    # --------------------------------------
    @commands.Cog.listener()
    async def on_ready(self):
        """
        Start the daily backup task once the bot is ready.
        """
        if not self.daily_backup.is_running():
            self.daily_backup.start()

    async def cog_unload(self):
        self.daily_backup.cancel()

    # --------------------------------------
    # Scheduled task: daily XLSX backup
    # --------------------------------------
    @tasks.loop(hours=24)
    async def daily_backup(self):
        """
        Once per day:
        - Load all submission records from GitHub
        - Export them as XLSX
        - Upload it to the backup channel and delete the temporary file
        """
        await self.bot.wait_until_ready()

        channel = discord.utils.get(
            self.bot.get_all_channels(),
            name=self.services.settings.backup_channel_name
        )

        if not channel:
            logger.error("❌ Backup channel not found.")
            return

        try:
            records = await self.services.repository.load()
        except RepositoryError as e:
            logger.error("❌ Error during backup: %s", e)
            return

        filename = await asyncio.to_thread(self.services.exporter.export_xlsx, records, tempfile.gettempdir())
        try:
            await channel.send(
                f"📦 Submissions backup ({len(records)} record(s)): `{os.path.basename(filename)}`",
                file=discord.File(filename)
            )
            logger.info("✅ Backup %s sent to Discord.", filename)
        except discord.HTTPException as e:
            logger.error("❌ Error during backup upload: %s", e)
        finally:
            # Clean up temporary file
            os.remove(filename)


async def setup(bot: commands.Bot):
    """
    Required setup hook for discord.py extension loader.
    """
    await bot.add_cog(BackupCog(bot))
