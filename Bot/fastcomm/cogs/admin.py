# ==========================================
# fastcomm/cogs/admin.py
# Operator tools for persisted submissions
#
# Responsibilities:
# - Provide the /admin-action slash command (admin guild only)
# - Browse, view and delete submissions by index
# - Adjust and list fast commission percentages
# - Export all submissions as XLSX on demand
#
# Security considerations:
# - Every action checks the operator allowlist
#   (ADMIN_USER_IDS, or ADMIN_ROLE_ID inside ADMIN_GUILD_ID)
# - Deletions need an explicit confirmation button
#
# Index hazard:
# Records are addressed by position. Indices shown here are only valid
# until the list changes; deletes re-validate against a fresh snapshot.
# ==========================================

import asyncio
import logging
import os
import tempfile
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from fastcomm.services.errors import InvalidIndexError, RepositoryError
from fastcomm.services.repository import FastCommissionSettings
from fastcomm.ui.embeds import (
    SUCCESS_COLOR,
    WARNING_COLOR,
    fast_settings_embed,
    record_detail_embed,
    record_list_embed,
)
from fastcomm.ui.views import DeleteConfirmView
from fastcomm.utils.formatting import format_percentage
from fastcomm.utils.parsing import parse_index_ranges
from fastcomm.utils.permissions import is_operator

logger = logging.getLogger(__name__)

# Discord caps embeds at 25 fields
MAX_LISTED = 25
LIST_RECENT = 20
PREVIEW_LINES = 25


ACTION_CHOICES = [
    app_commands.Choice(name="Check Submissions", value="check_submissions"),
    app_commands.Choice(name="List Recent", value="list"),
    app_commands.Choice(name="Delete by Index", value="delete"),
    app_commands.Choice(name="Bulk Delete", value="bulk_delete"),
    app_commands.Choice(name="View Details", value="view"),
    app_commands.Choice(name="Adjust Fast Commission %", value="adjust_fast_comm"),
    app_commands.Choice(name="View Fast Commission Settings", value="view_fast_comm_settings"),
    app_commands.Choice(name="Export XLSX", value="export"),
]


class AdminCog(commands.Cog):
    """
    Cog exposing `/admin-action`.

    Each action is a `_action_<value>` coroutine receiving the
    interaction (already deferred) and the command options.
    """

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.services = bot.services

    def _authorized(self, interaction: discord.Interaction) -> bool:
        s = self.services.settings
        return is_operator(interaction.user, interaction.guild_id, s.admin_user_ids, s.admin_guild_id, s.admin_role_id)

    @app_commands.command(
        name="admin-action",
        description="Admin actions for submission management (Admin only)"
    )
    @app_commands.default_permissions(administrator=True)
    @app_commands.describe(
        action="Action to perform",
        user_id="User ID or username to check (for check_submissions)",
        limit="Number of recent submissions to show (for check_submissions, default: 10)",
        index="Index number of submission (for delete/view)",
        indices="Comma-separated indices for bulk delete (e.g. 1,3,5-8,12)",
        project_name="Project name (for adjust_fast_comm)",
        percentage="Fast commission percentage 0-100 (for adjust_fast_comm)",
        confirm="Confirm bulk deletion (required for bulk delete)",
    )
    @app_commands.choices(action=ACTION_CHOICES)
    async def admin_action(
        self,
        interaction: discord.Interaction,
        action: app_commands.Choice[str],
        user_id: Optional[str] = None,
        limit: Optional[app_commands.Range[int, 1, MAX_LISTED]] = None,
        index: Optional[app_commands.Range[int, 0]] = None,
        indices: Optional[str] = None,
        project_name: Optional[str] = None,
        percentage: Optional[app_commands.Range[float, 0.0, 100.0]] = None,
        confirm: Optional[bool] = None,
    ):
        if not self._authorized(interaction):
            await interaction.response.send_message(
                "❌ You do not have permission to use this command.",
                ephemeral=True
            )
            return

        await interaction.response.defer(ephemeral=True)
        handler = getattr(self, f"_action_{action.value}")
        options = {
            "user_id": user_id,
            "limit": limit,
            "index": index,
            "indices": indices,
            "project_name": project_name,
            "percentage": percentage,
            "confirm": confirm,
        }

        try:
            await handler(interaction, **options)
        except RepositoryError as e:
            logger.error("❌ Admin action %s failed: %s", action.value, e)
            await interaction.followup.send(
                "❌ Could not reach the submissions backup. Please try again.",
                ephemeral=True
            )

    # --------------------------------------
    # Browsing
    # --------------------------------------
    async def _action_check_submissions(self, interaction: discord.Interaction, user_id=None, limit=None, **_):
        records = await self.services.repository.load()
        rows = list(enumerate(records))

        if user_id:
            needle = user_id.strip().lower()
            rows = [(i, r) for i, r in rows if r.user_id == user_id.strip() or needle in r.username.lower()]

        recent = list(reversed(rows[-(limit or 10):]))
        if not recent:
            await interaction.followup.send(
                f"❌ No submissions found for user: {user_id}" if user_id else "❌ No submissions found in database.",
                ephemeral=True
            )
            return

        embed = record_list_embed(
            "📊 Commission Submissions Data",
            f"Showing {len(recent)} submission(s)" + (f" for user: {user_id}" if user_id else ""),
            recent,
            self.services.settings.display_timezone,
        )
        await interaction.followup.send(embed=embed, ephemeral=True)

    async def _action_list(self, interaction: discord.Interaction, **_):
        records = await self.services.repository.load()
        recent = list(reversed(list(enumerate(records))[-LIST_RECENT:]))

        if not recent:
            await interaction.followup.send("❌ No submissions found in database.", ephemeral=True)
            return

        embed = record_list_embed(
            "📝 Recent Submissions for Amendment",
            "Use the index number with `/admin-action` to delete or view details",
            recent,
            self.services.settings.display_timezone,
            color=WARNING_COLOR,
            detailed=False,
        )
        await interaction.followup.send(embed=embed, ephemeral=True)

    async def _action_view(self, interaction: discord.Interaction, index=None, **_):
        records = await self.services.repository.load()
        if index is None or not 0 <= index < len(records):
            await interaction.followup.send(self._invalid_index(len(records)), ephemeral=True)
            return

        record = records[index]
        embed = record_detail_embed(
            index,
            record,
            self.services.fast_settings.get(record.project_name),
            self.services.settings.display_timezone,
        )
        await interaction.followup.send(embed=embed, ephemeral=True)

    @staticmethod
    def _invalid_index(size: int) -> str:
        if size == 0:
            return "❌ No submissions found in database."
        return f"❌ Invalid index. Please provide a valid index (0-{size - 1})."

    # --------------------------------------
    # Deletion
    # --------------------------------------
    async def _action_delete(self, interaction: discord.Interaction, index=None, **_):
        records = await self.services.repository.load()
        if index is None or not 0 <= index < len(records):
            await interaction.followup.send(self._invalid_index(len(records)), ephemeral=True)
            return

        record = records[index]
        await interaction.followup.send(
            "⚠️ **Confirm Deletion**\n\n"
            "Are you sure you want to delete this submission?\n\n"
            f"**Project:** {record.project_name}\n"
            f"**User:** {record.username}\n"
            f"**Index:** {index}\n\n"
            "**This action cannot be undone!**",
            view=DeleteConfirmView(interaction.user.id, [index], self._delete_confirmed),
            ephemeral=True
        )

    async def _action_bulk_delete(self, interaction: discord.Interaction, indices=None, confirm=None, **_):
        if not indices:
            await interaction.followup.send(
                "❌ Please provide indices to delete.\n\n"
                "**Examples:**\n• Single: `1,3,5`\n• Range: `1-5` (deletes 1,2,3,4,5)\n• Mixed: `1,3,5-8,12`",
                ephemeral=True
            )
            return
        if not confirm:
            await interaction.followup.send(
                "❌ Bulk deletion requires confirmation. Set `confirm` to `true`.",
                ephemeral=True
            )
            return

        wanted = parse_index_ranges(indices)
        if not wanted:
            await interaction.followup.send("❌ No valid indices found in your input.", ephemeral=True)
            return

        records = await self.services.repository.load()
        invalid = sorted(i for i in wanted if i >= len(records))
        if invalid:
            await interaction.followup.send(
                f"❌ Invalid indices found: {', '.join(map(str, invalid))}\n\n"
                + (f"Valid range: 0-{len(records) - 1}" if records else "The database is empty."),
                ephemeral=True
            )
            return

        lines = [f"• Index {i}: {records[i].project_name} - {records[i].username}" for i in wanted]
        preview = lines[:PREVIEW_LINES]
        if len(lines) > PREVIEW_LINES:
            preview.append(f"…and {len(lines) - PREVIEW_LINES} more")

        await interaction.followup.send(
            f"⚠️ **Confirm Bulk Deletion**\n\n"
            f"**You are about to delete {len(wanted)} submission(s):**\n\n"
            + "\n".join(preview)[:1400] + "\n\n"
            "**This action cannot be undone!**",
            view=DeleteConfirmView(interaction.user.id, wanted, self._delete_confirmed),
            ephemeral=True
        )

    async def _delete_confirmed(self, interaction: discord.Interaction, indices: list[int]):
        try:
            removed = await self.services.repository.delete_indices(indices)
        except InvalidIndexError as e:
            await interaction.followup.send(
                f"❌ The submission list changed before deletion (invalid: {', '.join(map(str, e.indices))}). "
                "Nothing was deleted; list again and retry.",
                ephemeral=True
            )
            return
        except RepositoryError as e:
            logger.error("❌ Delete of %s failed: %s", indices, e)
            await interaction.followup.send("❌ Failed to delete. Please try again.", ephemeral=True)
            return

        logger.info("🗑️ %s deleted submission(s) %s", interaction.user, indices)
        summary = "\n".join(f"• {r.project_name} - {r.username}" for r in removed)
        await interaction.followup.send(
            f"✅ Deleted {len(removed)} submission(s):\n{summary}"[:1900],
            ephemeral=True
        )

    # --------------------------------------
    # Fast commission
    # --------------------------------------
    async def _action_adjust_fast_comm(self, interaction: discord.Interaction, project_name=None, percentage=None, **_):
        if not project_name or percentage is None:
            await interaction.followup.send(
                "❌ Please provide both project_name and percentage for fast commission adjustment.",
                ephemeral=True
            )
            return

        try:
            await self.services.fast_settings.set(project_name, percentage)
        except (ValueError, RepositoryError) as e:
            logger.error("❌ Failed to save fast commission for %s: %s", project_name, e)
            await interaction.followup.send(
                "❌ Failed to save fast commission percentage. Please try again.",
                ephemeral=True
            )
            return

        embed = discord.Embed(title="✅ Fast Commission Percentage Updated", color=SUCCESS_COLOR)
        embed.add_field(name="🏢 Project Name", value=project_name, inline=True)
        embed.add_field(name="💰 Fast Commission %", value=format_percentage(percentage), inline=True)
        embed.add_field(name="📋 Status", value="Setting saved successfully", inline=False)
        await interaction.followup.send(embed=embed, ephemeral=True)

    async def _action_view_fast_comm_settings(self, interaction: discord.Interaction, **_):
        settings = self.services.fast_settings.all()
        default = FastCommissionSettings.DEFAULT_PERCENTAGE

        if not settings:
            await interaction.followup.send(
                "📋 **No custom fast commission settings found**\n\n"
                f"All projects will use the default {format_percentage(default)} fast commission rate.\n\n"
                "Use `/admin-action` with `adjust_fast_comm` to set custom percentages for specific projects.",
                ephemeral=True
            )
            return

        await interaction.followup.send(embed=fast_settings_embed(settings, default), ephemeral=True)

    # --------------------------------------
    # Export
    # --------------------------------------
    async def _action_export(self, interaction: discord.Interaction, **_):
        records = await self.services.repository.load()
        if not records:
            await interaction.followup.send("📭 No submissions to export.", ephemeral=True)
            return

        filename = await asyncio.to_thread(self.services.exporter.export_xlsx, records, tempfile.gettempdir())
        try:
            await interaction.followup.send(
                f"📦 Exported {len(records)} submission(s): `{os.path.basename(filename)}`",
                file=discord.File(filename),
                ephemeral=True
            )
        finally:
            os.remove(filename)


async def setup(bot: commands.Bot):
    """
    Admin commands are registered to the admin guild only when one is
    configured; otherwise they stay global (still allowlist-checked).
    """
    guild_id = bot.services.settings.admin_guild_id
    if guild_id:
        await bot.add_cog(AdminCog(bot), guilds=[discord.Object(id=guild_id)])
    else:
        await bot.add_cog(AdminCog(bot))
