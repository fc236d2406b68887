"""
fastcomm/ui/embeds.py

Embed builders for the FastComm bot.

Drafts and SubmissionRecords expose the same field names, so every
builder here accepts either one.
"""

from datetime import datetime, timezone
from typing import Iterable

import discord

from fastcomm.services.commission import fast_commission, parse_amount, total_payout
from fastcomm.services.sessions import SubmissionDraft, SubmissionRecord
from fastcomm.utils.formatting import (
    chunk_message_blocks,
    format_money,
    format_percentage,
    format_timestamp,
    truncate,
)

CONFIRM_COLOR = 0x00AE86
SUCCESS_COLOR = 0x28A745
INFO_COLOR = 0x0099FF
WARNING_COLOR = 0xFF9900


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _participant_lines(source) -> list[str]:
    return [
        f"**{p.name}** ({p.code or '-'}): {format_percentage(p.share)} - {format_money(p.payout)}"
        for p in source.filled_participants
    ]


def draft_summary(draft: SubmissionDraft) -> str:
    """Plain-text checklist of what has been entered so far."""
    lines = [
        f"🏢 **Project:** {draft.project_name or '-'} | **Unit:** {draft.unit_no or '-'}",
        f"💵 **Nett Price:** {format_money(draft.net_price)} | **Rate:** {format_percentage(draft.commission_rate)}",
    ]
    filled = draft.filled_participants
    if filled:
        lines.append("👥 **Consultants:**")
        for idx, p in enumerate(draft.participants, start=1):
            if p.is_filled:
                lines.append(f"  {idx}. {p.name} ({p.code or '-'}) - {format_percentage(p.share)}")
    else:
        lines.append("👥 **Consultants:** none yet")

    lines.append(f"{'✅' if draft.has_customer else '⬜'} Customer details")
    return "\n".join(lines)


def confirmation_embed(source, fast_percentage: float, title: str = "📋 Commission Submission Confirmation") -> discord.Embed:
    """
    Full breakdown shown before confirmation and in operator detail views.

    Args:
        source: SubmissionDraft or SubmissionRecord with payouts computed
        fast_percentage: Fast-commission % configured for the project
    """
    embed = discord.Embed(title=title, color=CONFIRM_COLOR, timestamp=_now())
    embed.add_field(
        name="🏢 Project Details",
        value=(
            f"**Project:** {source.project_name}\n"
            f"**Unit:** {source.unit_no}\n"
            f"**SPA Price:** {format_money(source.listed_price)}\n"
            f"**Nett Price:** {format_money(source.net_price)}\n"
            f"**Commission Rate:** {format_percentage(source.commission_rate)}"
        ),
        inline=False,
    )
    embed.add_field(
        name="👤 Customer Details",
        value=truncate(
            f"**Name:** {source.customer_name}\n"
            f"**Phone:** {source.customer_phone}\n"
            f"**Address:** {source.customer_address}"
        ),
        inline=False,
    )
    embed.add_field(
        name="📅 Important Dates",
        value=f"**SPA Date:** {source.contract_date}\n**LA Date:** {source.loan_approval_date}",
        inline=False,
    )

    lines = _participant_lines(source)
    if not lines:
        return embed

    total = total_payout(source.participants)
    embed.add_field(name="👥 Agent Commission Breakdown", value=truncate("\n".join(lines)), inline=False)
    embed.add_field(name="💰 Total Commission", value=format_money(total), inline=True)

    fast_lines = [
        f"**{p.name}**: {format_money(fast_commission(p.payout, fast_percentage))}"
        for p in source.filled_participants
    ]
    embed.add_field(
        name=f"⚡ Fast Commission ({format_percentage(fast_percentage)})",
        value=truncate("\n".join(fast_lines)),
        inline=False,
    )
    embed.add_field(
        name="💸 Total Fast Commission",
        value=format_money(fast_commission(total, fast_percentage)),
        inline=True,
    )
    return embed


def notification_embed(record: SubmissionRecord, fast_percentage: float, tz_name: str) -> discord.Embed:
    """Announcement posted to the notification channel on completion."""
    total = total_payout(record.participants)

    embed = discord.Embed(title="📋 New Commission Submission Completed", color=SUCCESS_COLOR, timestamp=_now())
    embed.add_field(name="🏢 Project", value=f"{record.project_name} - {record.unit_no}", inline=True)
    embed.add_field(name="👤 Customer", value=record.customer_name or "-", inline=True)
    embed.add_field(name="💰 Total Commission", value=format_money(total), inline=True)
    embed.add_field(
        name="⚡ Fast Commission",
        value=f"{format_money(fast_commission(total, fast_percentage))} ({format_percentage(fast_percentage)})",
        inline=True,
    )
    embed.add_field(name="📝 Submission ID", value=record.submission_id or "-", inline=True)
    embed.add_field(name="📅 Submitted", value=format_timestamp(record.submitted_at, tz_name), inline=True)

    agents = [f"**{p.name}**: {format_money(p.payout)}" for p in record.filled_participants]
    if agents:
        embed.add_field(name="👥 Agent Commissions", value=truncate("\n".join(agents)), inline=False)

    if record.uploaded_files:
        files = "\n".join(f"📁 [{f.original_name}]({f.storage_link})" for f in record.uploaded_files)
        embed.add_field(
            name=f"📂 Documents Uploaded to Google Drive ({len(record.uploaded_files)})",
            value=truncate(files),
            inline=False,
        )
    return embed


def record_detail_embed(index: int, record: SubmissionRecord, fast_percentage: float, tz_name: str) -> discord.Embed:
    embed = confirmation_embed(record, fast_percentage, title=f"📋 Submission Details - Index {index}")
    embed.add_field(
        name="👤 Submission Info",
        value=(
            f"**User:** {record.username} ({record.user_id})\n"
            f"**Submitted:** {format_timestamp(record.submitted_at, tz_name)}\n"
            f"**Jotform ID:** {record.submission_id or '-'}"
        ),
        inline=False,
    )
    if record.uploaded_files:
        files = "\n".join(f"📁 [{f.original_name}]({f.storage_link})" for f in record.uploaded_files)
        embed.add_field(name=f"📂 Documents ({len(record.uploaded_files)})", value=truncate(files), inline=False)
    return embed


def record_list_embed(title: str, description: str, rows: Iterable[tuple[int, SubmissionRecord]],
                      tz_name: str, color: int = INFO_COLOR, detailed: bool = True) -> discord.Embed:
    """
    One field per (index, record) pair.

    Discord caps embeds at 25 fields; callers pass at most that many.
    """
    embed = discord.Embed(title=title, description=description, color=color, timestamp=_now())
    for index, record in rows:
        if detailed:
            value = (
                f"**User:** {record.username} ({record.user_id})\n"
                f"**Unit:** {record.unit_no}\n"
                f"**Nett Price:** {format_money(record.net_price)}\n"
                f"**Total Commission:** {format_money(total_payout(record.participants))}\n"
                f"**Submitted:** {format_timestamp(record.submitted_at, tz_name)}"
            )
            embed.add_field(name=f"#{index} - {record.project_name}", value=truncate(value), inline=False)
        else:
            value = (
                f"**Project:** {record.project_name}\n"
                f"**User:** {record.username}\n"
                f"**Date:** {format_timestamp(record.submitted_at, tz_name, fmt='%d/%m/%Y')}"
            )
            embed.add_field(name=f"Index: {index}", value=truncate(value), inline=True)
    return embed


def my_submissions_embed(records: list[SubmissionRecord], tz_name: str, shown: int) -> discord.Embed:
    embed = discord.Embed(
        title="📋 Your Commission Submissions",
        description=f"Found {len(records)} submission(s)",
        color=INFO_COLOR,
        timestamp=_now(),
    )
    for pos, record in enumerate(records[:shown], start=1):
        embed.add_field(
            name=f"{pos}. {record.project_name}",
            value=(
                f"**Unit:** {record.unit_no}\n"
                f"**Total Commission:** {format_money(total_payout(record.participants))}\n"
                f"**Submitted:** {format_timestamp(record.submitted_at, tz_name)}\n"
                f"**Documents:** {len(record.uploaded_files)} file(s)"
            ),
            inline=True,
        )
    if len(records) > shown:
        embed.set_footer(text=f"Showing {shown} of {len(records)} submissions.")
    return embed


def fast_settings_embed(settings: dict[str, float], default_percentage: float) -> discord.Embed:
    embed = discord.Embed(
        title="💰 Fast Commission Settings",
        description="Custom fast commission percentages by project",
        color=INFO_COLOR,
        timestamp=_now(),
    )
    blocks = [f"**{project}**: {format_percentage(pct)}" for project, pct in sorted(settings.items())]
    for n, chunk in enumerate(chunk_message_blocks(blocks, max_chars=1000), start=1):
        name = "🏢 Project Settings" if n == 1 else f"🏢 Project Settings (continued {n})"
        embed.add_field(name=name, value=chunk, inline=False)

    embed.add_field(
        name="📋 Default Setting",
        value=f"Projects not listed above use **{format_percentage(default_percentage)}** fast commission rate",
        inline=False,
    )
    return embed


def upload_form_embed(draft: SubmissionDraft) -> discord.Embed:
    embed = discord.Embed(
        title="📤 Upload Your Documents",
        description=(
            "Your submission is confirmed. Open the form below and upload the "
            "supporting documents (SPA, LA, booking form, etc).\n\n"
            "Once you have submitted the form, press **Check Upload Status**."
        ),
        color=WARNING_COLOR,
        timestamp=_now(),
    )
    embed.add_field(name="🏢 Project", value=f"{draft.project_name} - {draft.unit_no}", inline=False)
    return embed


def share_total_mismatch(total) -> str:
    diff = parse_amount(total) - 100
    hint = "over" if diff > 0 else "short"
    return (
        f"❌ **Consultant shares total {format_percentage(total)}**, they must add up to 100%.\n"
        f"You are {format_percentage(abs(diff))} {hint}. Edit a consultant below, then re-check."
    )
