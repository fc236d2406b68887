# ==========================================
# fastcomm/cogs/submission.py
# Consultant entry point for commission claims
#
# Responsibilities:
# - Provide the /fast-comm-submission slash command
# - Resume an existing draft or open the project modal
#
# Important:
# - This cog does NOT implement logic itself
# - It delegates all behavior to SubmissionFlow (UI) and
#   SubmissionWorkflow (state)
# ==========================================

from discord.ext import commands
import discord

from fastcomm.ui.views import SubmissionFlow


class SubmissionCog(commands.Cog):
    """
    Cog exposing the `/fast-comm-submission` slash command.

    The flow walks the user through:
    - Project details
    - Up to four consultants and their shares
    - Customer details and confirmation
    - Document upload through the Jotform form
    """

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        services = bot.services
        self.flow = SubmissionFlow(services.workflow, services.fast_settings)

    @discord.app_commands.command(
        name="fast-comm-submission",
        description="📋 Submit a commission claim"
    )
    async def fast_comm_submission(self, interaction: discord.Interaction):
        await self.flow.resume(interaction)

    async def cog_unload(self):
        await self.flow.workflow.close()


async def setup(bot: commands.Bot):
    """
    Required setup hook for discord.py extension loading.
    """
    await bot.add_cog(SubmissionCog(bot))
