"""
fastcomm/ui/modals.py

Discord UI Modals used by the FastComm submission flow.

This module contains:
- Project details modal
- Consultant (participant) modal, one per slot
- Customer details modal

All modals are UI-only: they hand their values to the SubmissionWorkflow
and pass the result to the flow presenter (fastcomm.ui.views.SubmissionFlow)
that decides what the user sees next.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import discord
from discord.ui import Modal, TextInput

from fastcomm.services.commission import Participant
from fastcomm.services.errors import FastCommError
from fastcomm.services.sessions import SubmissionDraft

if TYPE_CHECKING:
    from fastcomm.ui.views import SubmissionFlow


def _share_text(participant: Participant | None) -> str:
    if participant is None or not participant.is_filled:
        return ""
    return f"{participant.share:g}"


class ProjectModal(Modal, title="Project Details"):
    """
    First step: project and pricing.

    Prefilled from the existing draft so editing does not lose anything.
    """

    def __init__(self, flow: SubmissionFlow, draft: SubmissionDraft | None = None):
        super().__init__()
        self.flow = flow
        d = draft or SubmissionDraft(user_id="")

        self.project_name = TextInput(
            label="Project Name",
            placeholder="e.g. The Mate Residences",
            default=d.project_name or None,
            required=True,
            max_length=100,
        )
        self.unit_no = TextInput(
            label="Unit No",
            placeholder="e.g. A-12-03",
            default=d.unit_no or None,
            required=True,
            max_length=50,
        )
        self.listed_price = TextInput(
            label="SPA Price (RM)",
            placeholder="e.g. 650,000",
            default=d.listed_price or None,
            required=True,
            max_length=20,
        )
        self.net_price = TextInput(
            label="Nett Price (RM)",
            placeholder="e.g. 600,000",
            default=d.net_price or None,
            required=True,
            max_length=20,
        )
        self.commission_rate = TextInput(
            label="Commission Rate (%)",
            placeholder="e.g. 3",
            default=d.commission_rate or None,
            required=True,
            max_length=10,
        )
        for item in (self.project_name, self.unit_no, self.listed_price, self.net_price, self.commission_rate):
            self.add_item(item)

    async def on_submit(self, interaction: discord.Interaction):
        try:
            step = self.flow.workflow.submit_project(
                str(interaction.user.id),
                project_name=self.project_name.value,
                unit_no=self.unit_no.value,
                listed_price=self.listed_price.value,
                net_price=self.net_price.value,
                commission_rate=self.commission_rate.value,
                display_name=interaction.user.display_name,
                username=interaction.user.name,
            )
        except FastCommError as e:
            await self.flow.fail(interaction, e)
            return

        await self.flow.show_participants(interaction, step.draft, saved="✅ Project details saved.")


class ParticipantModal(Modal):
    """
    One consultant slot (1-4).

    Submitting overwrites the slot; submitting it blank leaves it as is.
    """

    def __init__(self, flow: SubmissionFlow, slot: int, existing: Participant | None = None):
        super().__init__(title=f"Consultant {slot}")
        self.flow = flow
        self.slot = slot

        self.name = TextInput(
            label="Consultant Name",
            default=(existing.name if existing and existing.is_filled else None),
            required=slot == 1,
            max_length=100,
        )
        self.code = TextInput(
            label="Consultant Code",
            default=(existing.code if existing and existing.is_filled else None),
            required=False,
            max_length=30,
        )
        self.share = TextInput(
            label="Share of Commission (%)",
            placeholder="e.g. 50",
            default=_share_text(existing) or None,
            required=slot == 1,
            max_length=10,
        )
        self.add_item(self.name)
        self.add_item(self.code)
        self.add_item(self.share)

    async def on_submit(self, interaction: discord.Interaction):
        try:
            step = self.flow.workflow.submit_participant(
                str(interaction.user.id),
                self.slot,
                name=self.name.value,
                code=self.code.value,
                share=self.share.value.rstrip("%"),
            )
        except FastCommError as e:
            await self.flow.fail(interaction, e)
            return

        await self.flow.show_participants(interaction, step.draft, saved=f"✅ Consultant {self.slot} saved.")


class CustomerModal(Modal, title="Customer Details"):
    """Last data step; submitting it validates shares and computes payouts."""

    def __init__(self, flow: SubmissionFlow, draft: SubmissionDraft):
        super().__init__()
        self.flow = flow

        self.customer_name = TextInput(
            label="Customer Name",
            default=draft.customer_name or None,
            required=True,
            max_length=100,
        )
        self.customer_phone = TextInput(
            label="Customer Phone",
            default=draft.customer_phone or None,
            required=True,
            max_length=30,
        )
        self.customer_address = TextInput(
            label="Customer Address",
            style=discord.TextStyle.paragraph,
            default=draft.customer_address or None,
            required=True,
            max_length=300,
        )
        self.contract_date = TextInput(
            label="SPA Date (YYYY-MM-DD)",
            placeholder="2024-01-31",
            default=draft.contract_date or None,
            required=True,
            max_length=20,
        )
        self.loan_approval_date = TextInput(
            label="LA Date (YYYY-MM-DD)",
            placeholder="2024-01-31",
            default=draft.loan_approval_date or None,
            required=True,
            max_length=20,
        )
        for item in (self.customer_name, self.customer_phone, self.customer_address,
                     self.contract_date, self.loan_approval_date):
            self.add_item(item)

    async def on_submit(self, interaction: discord.Interaction):
        try:
            review = self.flow.workflow.submit_customer(
                str(interaction.user.id),
                customer_name=self.customer_name.value,
                customer_phone=self.customer_phone.value,
                customer_address=self.customer_address.value,
                contract_date=self.contract_date.value,
                loan_approval_date=self.loan_approval_date.value,
            )
        except FastCommError as e:
            await self.flow.fail(interaction, e)
            return

        await self.flow.show_review(interaction, review)
