# ==========================================
# fastcomm/cogs/my_uploads.py
# Consultant view of their own submissions
#
# Responsibilities:
# - Provide the /check-my-upload slash command
# - List the caller's persisted submissions with a detail button each
# - Mention a draft still waiting for documents, if any
# ==========================================

import logging

import discord
from discord.ext import commands

from fastcomm.services.errors import RepositoryError
from fastcomm.services.sessions import DraftStatus
from fastcomm.ui.embeds import my_submissions_embed, record_detail_embed
from fastcomm.ui.views import MySubmissionsView

logger = logging.getLogger(__name__)

# Leaves room for the refresh button (25 components per message)
MAX_BUTTONS = 20


class MyUploadsCog(commands.Cog):
    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.services = bot.services

    @discord.app_commands.command(
        name="check-my-upload",
        description="Check your submission status and uploaded documents"
    )
    async def check_my_upload(self, interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True)
        await self._send_overview(interaction)

    async def _send_overview(self, interaction: discord.Interaction):
        user_id = str(interaction.user.id)
        tz = self.services.settings.display_timezone

        try:
            records = await self.services.repository.load()
        except RepositoryError as e:
            logger.error("❌ Error loading submissions for %s: %s", user_id, e)
            await interaction.followup.send(
                "❌ Error retrieving your submission data. Please try again later.",
                ephemeral=True
            )
            return

        pending = ""
        draft = self.services.store.get(user_id)
        if draft is not None and draft.status in (DraftStatus.AWAITING_EXTERNAL_FORM, DraftStatus.AWAITING_DOCUMENT):
            pending = (
                f"⏳ **{draft.project_name} - {draft.unit_no}** is waiting for documents. "
                "Use **Check Upload Status** on your upload panel once you have submitted the form.\n\n"
            )

        rows = [(idx, r) for idx, r in enumerate(records) if r.user_id == user_id]
        if not rows:
            await interaction.followup.send(
                pending + "❌ **No submissions found**\n\nYou haven't submitted any commission claims yet. "
                "Use `/fast-comm-submission` to create your first submission.",
                ephemeral=True
            )
            return

        shown = rows[:MAX_BUTTONS]
        embed = my_submissions_embed([r for _, r in rows], tz, shown=len(shown))
        view = MySubmissionsView(shown, on_view=self._view_record, on_refresh=self._refresh)

        await interaction.followup.send(pending or None, embed=embed, view=view, ephemeral=True)

    async def _refresh(self, interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True)
        await self._send_overview(interaction)

    async def _view_record(self, interaction: discord.Interaction, index: int):
        await interaction.response.defer(ephemeral=True)
        try:
            records = await self.services.repository.load()
        except RepositoryError as e:
            logger.error("❌ Error loading submission %s: %s", index, e)
            await interaction.followup.send("❌ Could not load this submission. Please try again.", ephemeral=True)
            return

        # The list may have shifted since the buttons were drawn
        if index >= len(records) or records[index].user_id != str(interaction.user.id):
            await interaction.followup.send("❌ Submission not found. Press 🔄 Refresh.", ephemeral=True)
            return

        record = records[index]
        embed = record_detail_embed(
            index,
            record,
            self.services.fast_settings.get(record.project_name),
            self.services.settings.display_timezone,
        )
        await interaction.followup.send(embed=embed, ephemeral=True)


async def setup(bot: commands.Bot):
    await bot.add_cog(MyUploadsCog(bot))
