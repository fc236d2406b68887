"""
fastcomm/ui/views.py

Discord UI Views (buttons, selects, confirmation panels) used by the FastComm bot.

Responsibilities:
- Present each step of the submission flow (SubmissionFlow)
- Consultant step / edit menu / share-fix panels
- Upload form panel with status check and cancel
- Operator delete confirmation and "my submissions" browser

This module contains UI logic only.
All state changes are delegated to the SubmissionWorkflow.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

import discord
from discord.ui import Button, View

from fastcomm.services.commission import MAX_PARTICIPANTS, share_total
from fastcomm.services.errors import (
    FastCommError,
    InvalidTransitionError,
    SessionExpiredError,
    ValidationError,
)
from fastcomm.services.repository import FastCommissionSettings
from fastcomm.services.sessions import DraftStatus, SubmissionDraft, SubmissionRecord, UploadedFile
from fastcomm.services.workflow import (
    CompletionOutcome,
    CompletionStatus,
    ConfirmStatus,
    ReviewStep,
    SubmissionWorkflow,
)
from fastcomm.ui.embeds import (
    confirmation_embed,
    draft_summary,
    share_total_mismatch,
    upload_form_embed,
)
from fastcomm.ui.modals import CustomerModal, ParticipantModal, ProjectModal

logger = logging.getLogger(__name__)

VIEW_TIMEOUT = 900


async def _send(interaction: discord.Interaction, content: str | None = None, *,
                embed: discord.Embed | None = None, view: View | None = None) -> None:
    """Reply ephemerally whether or not the interaction was already answered."""
    kwargs = {"ephemeral": True}
    if embed is not None:
        kwargs["embed"] = embed
    if view is not None:
        kwargs["view"] = view

    if interaction.response.is_done():
        await interaction.followup.send(content, **kwargs)
    else:
        await interaction.response.send_message(content, **kwargs)


def _file_lines(files: list[UploadedFile] | tuple[UploadedFile, ...]) -> str:
    return "\n".join(f"📁 [{f.original_name}]({f.storage_link})" for f in files)


# --------------------------------------------------
# Flow presenter
# --------------------------------------------------
class SubmissionFlow:
    """
    Decides what the user sees after each workflow step.

    Modals and views call back into this object; it never mutates a
    draft itself.
    """

    def __init__(self, workflow: SubmissionWorkflow, fast_settings: FastCommissionSettings):
        self.workflow = workflow
        self.fast_settings = fast_settings

    # ---------- entry ----------
    async def resume(self, interaction: discord.Interaction) -> None:
        """Entry point of /fast-comm-submission."""
        user_id = str(interaction.user.id)
        draft = self.workflow.start(user_id, interaction.user.display_name, interaction.user.name)

        if draft.status == DraftStatus.AWAITING_EXTERNAL_FORM and draft.form is not None:
            await self.show_upload_form(interaction, draft, note="📤 You already have a confirmed submission waiting for documents.")
        elif draft.status == DraftStatus.AWAITING_DOCUMENT:
            await _send(interaction, "⏳ Your documents are being processed right now. Check back in a moment.")
        elif draft.status == DraftStatus.CONFIRMED:
            await _send(
                interaction,
                "⚠️ Your previous submission was confirmed but the upload form could not be created.\n"
                "Your data is preserved. Retry below.",
                view=FormRetryView(self, user_id),
            )
        elif draft.status == DraftStatus.AWAITING_CONFIRMATION:
            await _send(
                interaction,
                "📋 You have a submission waiting for confirmation.",
                embed=self._confirmation(draft),
                view=ConfirmationView(self, user_id),
            )
        else:
            await self.open_project(interaction, draft)

    async def open_project(self, interaction: discord.Interaction, draft: SubmissionDraft | None = None) -> None:
        await interaction.response.send_modal(ProjectModal(self, draft))

    async def restart(self, interaction: discord.Interaction) -> None:
        draft = self.workflow.start(str(interaction.user.id), interaction.user.display_name, interaction.user.name)
        await self.open_project(interaction, draft)

    # ---------- consultants ----------
    async def show_participants(self, interaction: discord.Interaction, draft: SubmissionDraft, saved: str = "") -> None:
        header = f"{saved}\n\n" if saved else ""
        await _send(
            interaction,
            f"{header}{draft_summary(draft)}\n\nAdd or edit consultants, then continue to customer details.",
            view=ParticipantStepView(self, draft),
        )

    async def open_participant(self, interaction: discord.Interaction, slot: int) -> None:
        try:
            existing = self.workflow.participant(str(interaction.user.id), slot)
        except FastCommError as e:
            await self.fail(interaction, e)
            return
        await interaction.response.send_modal(ParticipantModal(self, slot, existing))

    # ---------- customer / review ----------
    async def open_customer(self, interaction: discord.Interaction) -> None:
        try:
            draft = self.workflow.begin_customer(str(interaction.user.id))
        except FastCommError as e:
            await self.fail(interaction, e)
            return
        await interaction.response.send_modal(CustomerModal(self, draft))

    def _confirmation(self, draft: SubmissionDraft) -> discord.Embed:
        return confirmation_embed(draft, self.fast_settings.get(draft.project_name))

    async def show_review(self, interaction: discord.Interaction, review: ReviewStep) -> None:
        if not review.valid:
            await _send(interaction, share_total_mismatch(review.share_total), view=FixSharesView(self, review.draft))
            return

        await _send(
            interaction,
            "Please review your submission:",
            embed=self._confirmation(review.draft),
            view=ConfirmationView(self, review.draft.user_id),
        )

    async def recheck_shares(self, interaction: discord.Interaction) -> None:
        try:
            review = self.workflow.proceed_to_confirmation(str(interaction.user.id))
        except FastCommError as e:
            await self.fail(interaction, e)
            return
        await self.show_review(interaction, review)

    async def edit_section(self, interaction: discord.Interaction, section: str) -> None:
        try:
            draft = self.workflow.begin_edit(str(interaction.user.id), section)
        except FastCommError as e:
            await self.fail(interaction, e)
            return

        if section == "project":
            await self.open_project(interaction, draft)
        elif section == "customer":
            await interaction.response.send_modal(CustomerModal(self, draft))
        else:
            await self.show_participants(interaction, draft)

    # ---------- confirmation ----------
    async def confirm(self, interaction: discord.Interaction) -> None:
        user_id = str(interaction.user.id)
        await interaction.response.defer(ephemeral=True, thinking=True)

        try:
            outcome = await self.workflow.confirm(user_id, interaction.user.name)
        except FastCommError as e:
            await self.fail(interaction, e)
            return

        if outcome.status in (ConfirmStatus.FORM_READY, ConfirmStatus.ALREADY_CONFIRMED):
            await self.show_upload_form(interaction, outcome.draft)
        elif outcome.status == ConfirmStatus.BUSY:
            await _send(interaction, "⏳ Your confirmation is already being processed. Please wait.")
        elif outcome.status == ConfirmStatus.INVALID_SHARES:
            await _send(interaction, share_total_mismatch(share_total(outcome.draft.participants)), view=FixSharesView(self, outcome.draft))
        elif outcome.status == ConfirmStatus.CANCELLED:
            await _send(interaction, "❌ This submission was cancelled.")
        else:
            await _send(
                interaction,
                "❌ **Could not create your upload form.**\n"
                "Your submission data is preserved. Please retry in a moment.",
                view=FormRetryView(self, user_id),
            )

    async def show_upload_form(self, interaction: discord.Interaction, draft: SubmissionDraft, note: str = "") -> None:
        await _send(
            interaction,
            note or None,
            embed=upload_form_embed(draft),
            view=UploadFormView(self, draft.user_id, draft.form.url),
        )

    async def cancel(self, interaction: discord.Interaction) -> None:
        try:
            draft = self.workflow.cancel(str(interaction.user.id))
        except InvalidTransitionError:
            await _send(interaction, "⏳ Your documents are being processed and can no longer be cancelled.")
            return

        if draft is None:
            await _send(interaction, "ℹ️ You have no submission in progress.")
        else:
            await _send(interaction, "❌ Submission cancelled. Use `/fast-comm-submission` to start again.")

    # ---------- status ----------
    async def check_status(self, interaction: discord.Interaction) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            outcome = await self.workflow.check_status(str(interaction.user.id))
        except FastCommError as e:
            await self.fail(interaction, e)
            return
        await self.show_completion(interaction, outcome)

    async def show_completion(self, interaction: discord.Interaction, outcome: CompletionOutcome) -> None:
        status = outcome.status
        files = outcome.files or (tuple(outcome.draft.uploaded_files) if outcome.draft else ())

        if status in (CompletionStatus.COMPLETED, CompletionStatus.ALREADY_COMPLETED):
            text = "✅ **Documents received!** Your commission claim is complete."
            if files:
                text += f"\n\n**{len(files)} file(s) saved:**\n{_file_lines(files)}"
            await _send(interaction, text[:1900])
        elif status == CompletionStatus.ALREADY_PROCESSING:
            await _send(interaction, "⏳ Your documents are being processed. Please check again shortly.")
        elif status == CompletionStatus.PENDING:
            await _send(
                interaction,
                "⏳ No upload found yet. If you just submitted the form it can take a minute to arrive; "
                "I'll check again automatically.",
            )
        elif status == CompletionStatus.NO_FORM:
            await _send(
                interaction,
                "⚠️ Your upload form has not been created yet.",
                view=FormRetryView(self, str(interaction.user.id)),
            )
        elif status == CompletionStatus.NO_FILES:
            await _send(interaction, "⚠️ Your form was received but no documents could be saved. Please re-submit the form with your files attached.")
        elif status == CompletionStatus.UNMATCHED:
            await _send(interaction, "❌ Your upload could not be matched to this submission. Please contact an admin.")
        else:
            await _send(interaction, "❌ Something went wrong while saving your documents. Please press **Check Upload Status** again in a moment.")

    # ---------- errors ----------
    async def fail(self, interaction: discord.Interaction, error: FastCommError) -> None:
        """Turn a workflow error into a user-facing message."""
        if isinstance(error, SessionExpiredError):
            await _send(
                interaction,
                "⚠️ **Session expired.** Your submission data was not found (the bot may have restarted).\n"
                "Please start a new submission.",
                view=RestartView(self, str(interaction.user.id)),
            )
        elif isinstance(error, ValidationError):
            await _send(interaction, f"❌ {error}")
        elif isinstance(error, InvalidTransitionError):
            await _send(interaction, "⚠️ That step is not available anymore. Use `/fast-comm-submission` to see where you are.")
        else:
            logger.error("Unhandled workflow error for %s: %s", interaction.user.id, error)
            await _send(interaction, "❌ Something went wrong. Please try again.")


# --------------------------------------------------
# Views
# --------------------------------------------------
class OwnerView(View):
    """View whose components only react to the user it was sent to."""

    def __init__(self, flow: SubmissionFlow, user_id: str, timeout: float = VIEW_TIMEOUT):
        super().__init__(timeout=timeout)
        self.flow = flow
        self.user_id = user_id

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if str(interaction.user.id) == self.user_id:
            return True
        await interaction.response.send_message("❌ This panel belongs to someone else.", ephemeral=True)
        return False


class ParticipantStepView(OwnerView):
    """
    Consultant step panel.

    Shows an "add" button for the next free slot, a select to edit
    filled slots, and the way on to customer details.
    """

    def __init__(self, flow: SubmissionFlow, draft: SubmissionDraft):
        super().__init__(flow, draft.user_id)

        next_slot = draft.next_free_slot()
        if next_slot is not None:
            add = Button(label=f"➕ Add Consultant {next_slot}", style=discord.ButtonStyle.primary)
            add.callback = self._open_slot(next_slot)
            self.add_item(add)

        filled = [idx for idx, p in enumerate(draft.participants, start=1) if p.is_filled]
        if filled:
            self.select = discord.ui.Select(
                placeholder="✏️ Edit a consultant",
                options=[
                    discord.SelectOption(label=f"Consultant {idx}: {draft.participants[idx - 1].name}"[:100], value=str(idx))
                    for idx in filled
                ],
            )
            self.select.callback = self._on_select
            self.add_item(self.select)

        proceed = Button(label="➡️ Customer Details", style=discord.ButtonStyle.success, disabled=not filled)
        proceed.callback = self._customer
        self.add_item(proceed)

        cancel = Button(label="❌ Cancel", style=discord.ButtonStyle.danger)
        cancel.callback = self._cancel
        self.add_item(cancel)

    def _open_slot(self, slot: int) -> Callable[[discord.Interaction], Awaitable[None]]:
        async def callback(interaction: discord.Interaction):
            await self.flow.open_participant(interaction, slot)
        return callback

    async def _on_select(self, interaction: discord.Interaction):
        await self.flow.open_participant(interaction, int(self.select.values[0]))

    async def _customer(self, interaction: discord.Interaction):
        await self.flow.open_customer(interaction)

    async def _cancel(self, interaction: discord.Interaction):
        await self.flow.cancel(interaction)
        self.stop()


class FixSharesView(OwnerView):
    """Shown when shares do not total 100%."""

    def __init__(self, flow: SubmissionFlow, draft: SubmissionDraft):
        super().__init__(flow, draft.user_id)

        slots = [idx for idx, p in enumerate(draft.participants, start=1) if p.is_filled]
        if len(slots) < MAX_PARTICIPANTS:
            slots.append(len(slots) + 1)

        self.select = discord.ui.Select(
            placeholder="✏️ Edit a consultant",
            options=[
                discord.SelectOption(
                    label=(f"Consultant {idx}: {draft.participants[idx - 1].name}" if idx <= len(draft.participants) else f"Add Consultant {idx}")[:100],
                    value=str(idx),
                )
                for idx in slots
            ],
        )
        self.select.callback = self._on_select
        self.add_item(self.select)

    async def _on_select(self, interaction: discord.Interaction):
        await self.flow.open_participant(interaction, int(self.select.values[0]))

    @discord.ui.button(label="🔁 Re-check Shares", style=discord.ButtonStyle.primary)
    async def recheck(self, interaction: discord.Interaction, button: Button):
        await self.flow.recheck_shares(interaction)

    @discord.ui.button(label="❌ Cancel", style=discord.ButtonStyle.danger)
    async def cancel(self, interaction: discord.Interaction, button: Button):
        await self.flow.cancel(interaction)
        self.stop()


class ConfirmationView(OwnerView):
    """Final review: confirm, edit or cancel."""

    @discord.ui.button(label="✅ Confirm & Upload Documents", style=discord.ButtonStyle.success)
    async def confirm(self, interaction: discord.Interaction, button: Button):
        await self.flow.confirm(interaction)
        self.stop()

    @discord.ui.button(label="✏️ Edit", style=discord.ButtonStyle.secondary)
    async def edit(self, interaction: discord.Interaction, button: Button):
        await interaction.response.send_message(
            "What would you like to edit?",
            view=EditMenuView(self.flow, self.user_id),
            ephemeral=True,
        )

    @discord.ui.button(label="❌ Cancel", style=discord.ButtonStyle.danger)
    async def cancel(self, interaction: discord.Interaction, button: Button):
        await self.flow.cancel(interaction)
        self.stop()


class EditMenuView(OwnerView):
    """Jump back to any section; nothing already entered is cleared."""

    @discord.ui.button(label="🏢 Project Details", style=discord.ButtonStyle.primary)
    async def edit_project(self, interaction: discord.Interaction, button: Button):
        await self.flow.edit_section(interaction, "project")

    @discord.ui.button(label="👥 Consultants", style=discord.ButtonStyle.primary)
    async def edit_participants(self, interaction: discord.Interaction, button: Button):
        await self.flow.edit_section(interaction, "participants")

    @discord.ui.button(label="👤 Customer Details", style=discord.ButtonStyle.primary)
    async def edit_customer(self, interaction: discord.Interaction, button: Button):
        await self.flow.edit_section(interaction, "customer")

    @discord.ui.button(label="⬅️ Back to Confirmation", style=discord.ButtonStyle.secondary)
    async def back(self, interaction: discord.Interaction, button: Button):
        await self.flow.recheck_shares(interaction)


class UploadFormView(OwnerView):
    """Link to the upload form plus status check / cancel."""

    def __init__(self, flow: SubmissionFlow, user_id: str, form_url: str):
        super().__init__(flow, user_id)
        self.add_item(Button(label="📤 Open Upload Form", style=discord.ButtonStyle.link, url=form_url))

    @discord.ui.button(label="🔍 Check Upload Status", style=discord.ButtonStyle.primary)
    async def check_status(self, interaction: discord.Interaction, button: Button):
        await self.flow.check_status(interaction)

    @discord.ui.button(label="❌ Cancel Submission", style=discord.ButtonStyle.danger)
    async def cancel(self, interaction: discord.Interaction, button: Button):
        await self.flow.cancel(interaction)
        self.stop()


class FormRetryView(OwnerView):
    """Shown when every form creation attempt failed."""

    @discord.ui.button(label="🔄 Retry", style=discord.ButtonStyle.primary)
    async def retry(self, interaction: discord.Interaction, button: Button):
        await self.flow.confirm(interaction)

    @discord.ui.button(label="✏️ Edit", style=discord.ButtonStyle.secondary)
    async def edit(self, interaction: discord.Interaction, button: Button):
        await interaction.response.send_message(
            "What would you like to edit?",
            view=EditMenuView(self.flow, self.user_id),
            ephemeral=True,
        )

    @discord.ui.button(label="❌ Cancel", style=discord.ButtonStyle.danger)
    async def cancel(self, interaction: discord.Interaction, button: Button):
        await self.flow.cancel(interaction)
        self.stop()


class RestartView(OwnerView):
    """Offered whenever a step finds its draft missing."""

    @discord.ui.button(label="🔄 Start New Submission", style=discord.ButtonStyle.primary)
    async def restart(self, interaction: discord.Interaction, button: Button):
        await self.flow.restart(interaction)
        self.stop()


# --------------------------------------------------
# Operator / history views
# --------------------------------------------------
class DeleteConfirmView(View):
    """
    Final confirmation for (bulk) deletion by index.

    The delete itself is delegated to `on_confirm(interaction, indices)`.
    """

    def __init__(self, requester_id: int, indices: list[int],
                 on_confirm: Callable[[discord.Interaction, list[int]], Awaitable[None]]):
        super().__init__(timeout=180)
        self.requester_id = requester_id
        self.indices = indices
        self.on_confirm = on_confirm

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if interaction.user.id == self.requester_id:
            return True
        await interaction.response.send_message("❌ Only the requester can confirm.", ephemeral=True)
        return False

    @discord.ui.button(label="✅ Confirm Delete", style=discord.ButtonStyle.danger)
    async def confirm(self, interaction: discord.Interaction, button: Button):
        await interaction.response.defer(ephemeral=True)
        await self.on_confirm(interaction, self.indices)
        self.stop()

    @discord.ui.button(label="❌ Cancel", style=discord.ButtonStyle.secondary)
    async def cancel(self, interaction: discord.Interaction, button: Button):
        await interaction.response.send_message("❌ Deletion cancelled.", ephemeral=True)
        self.stop()


class MySubmissionsView(View):
    """One "View" button per submission plus a refresh button."""

    def __init__(self, rows: list[tuple[int, SubmissionRecord]],
                 on_view: Callable[[discord.Interaction, int], Awaitable[None]],
                 on_refresh: Callable[[discord.Interaction], Awaitable[None]]):
        super().__init__(timeout=300)
        self.on_view = on_view
        self.on_refresh = on_refresh

        for index, record in rows:
            button = Button(label=f"View {record.project_name}"[:80], style=discord.ButtonStyle.primary)
            button.callback = self._view(index)
            self.add_item(button)

        refresh = Button(label="🔄 Refresh", style=discord.ButtonStyle.secondary)
        refresh.callback = self._refresh
        self.add_item(refresh)

    def _view(self, index: int) -> Callable[[discord.Interaction], Awaitable[None]]:
        async def callback(interaction: discord.Interaction):
            await self.on_view(interaction, index)
        return callback

    async def _refresh(self, interaction: discord.Interaction):
        await self.on_refresh(interaction)
