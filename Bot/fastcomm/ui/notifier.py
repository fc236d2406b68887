"""
fastcomm/ui/notifier.py

Posts completed submissions to the notification channel.
"""

import logging

import discord
from discord.ext import commands

from fastcomm.services.repository import FastCommissionSettings
from fastcomm.services.sessions import SubmissionRecord
from fastcomm.ui.embeds import notification_embed

logger = logging.getLogger(__name__)


class ChannelNotifier:
    """
    Async callable handed to SubmissionWorkflow as its notifier.

    Raises when the channel cannot be reached; the workflow logs that
    without undoing the completed submission.
    """

    def __init__(self, bot: commands.Bot, channel_id: int | None,
                 fast_settings: FastCommissionSettings, tz_name: str):
        self.bot = bot
        self.channel_id = channel_id
        self.fast_settings = fast_settings
        self.tz_name = tz_name

    async def _channel(self) -> discord.abc.Messageable:
        if not self.channel_id:
            raise RuntimeError("NOTIFICATION_CHANNEL_ID is not configured")
        channel = self.bot.get_channel(self.channel_id)
        if channel is None:
            channel = await self.bot.fetch_channel(self.channel_id)
        return channel

    async def __call__(self, record: SubmissionRecord) -> None:
        channel = await self._channel()
        embed = notification_embed(record, self.fast_settings.get(record.project_name), self.tz_name)
        await channel.send(content="🎉 **New Commission Submission!**", embed=embed)
        logger.info("📣 Notification sent for submission %s", record.submission_id)
