"""
fastcomm/services/export_service.py

Service responsible for exporting persisted submissions as an XLSX
workbook (daily backup channel upload and the operator `export` action).

Sheets:
- "Submissions": one row per record
- "Consultants": one row per consultant payout
- "Documents": one row per uploaded file

This service contains NO Discord-specific logic.
"""

from __future__ import annotations

import os
from datetime import datetime
from typing import Iterable

import openpyxl
from openpyxl.styles import Font
from openpyxl.workbook import Workbook

from fastcomm.services.commission import fast_commission, parse_amount, total_payout
from fastcomm.services.repository import FastCommissionSettings
from fastcomm.services.sessions import SubmissionRecord

SUBMISSION_HEADERS = [
    "Index", "Submitted At", "User ID", "Username", "Project", "Unit",
    "SPA Price", "Nett Price", "Commission Rate %", "Total Commission",
    "Fast Commission %", "Fast Commission", "Customer", "Phone", "Address",
    "SPA Date", "LA Date", "Jotform Submission ID", "Documents",
]
CONSULTANT_HEADERS = ["Index", "Project", "Unit", "Consultant", "Code", "Share %", "Commission"]
DOCUMENT_HEADERS = ["Index", "Project", "Unit", "Original Name", "Drive Name", "Drive Link", "MIME Type", "Size"]


class ExportService:
    """
    Builds XLSX backups from SubmissionRecords.

    `fast_settings` is optional; without it the fast-commission columns
    use the default percentage.
    """

    def __init__(self, fast_settings: FastCommissionSettings | None = None):
        self.fast_settings = fast_settings

    def _fast_percentage(self, project_name: str) -> float:
        if self.fast_settings is None:
            return FastCommissionSettings.DEFAULT_PERCENTAGE
        return self.fast_settings.get(project_name)

    def build_workbook(self, records: Iterable[SubmissionRecord]) -> Workbook:
        wb = openpyxl.Workbook()
        submissions = wb.active
        submissions.title = "Submissions"
        consultants = wb.create_sheet("Consultants")
        documents = wb.create_sheet("Documents")

        for sheet, headers in (
            (submissions, SUBMISSION_HEADERS),
            (consultants, CONSULTANT_HEADERS),
            (documents, DOCUMENT_HEADERS),
        ):
            sheet.append(headers)
            for cell in sheet[1]:
                cell.font = Font(bold=True)
            sheet.freeze_panes = "A2"

        for idx, record in enumerate(records):
            total = total_payout(record.participants)
            pct = self._fast_percentage(record.project_name)

            submissions.append([
                idx,
                record.submitted_at,
                record.user_id,
                record.username,
                record.project_name,
                record.unit_no,
                float(parse_amount(record.listed_price)),
                float(parse_amount(record.net_price)),
                float(parse_amount(record.commission_rate)),
                float(total),
                pct,
                float(fast_commission(total, pct)),
                record.customer_name,
                record.customer_phone,
                record.customer_address,
                record.contract_date,
                record.loan_approval_date,
                record.submission_id,
                len(record.uploaded_files),
            ])

            for p in record.filled_participants:
                consultants.append([
                    idx, record.project_name, record.unit_no,
                    p.name, p.code, p.share, float(parse_amount(p.payout)),
                ])

            for f in record.uploaded_files:
                documents.append([
                    idx, record.project_name, record.unit_no,
                    f.original_name, f.stored_name, f.storage_link, f.mime_type, f.size,
                ])

        return wb

    def export_xlsx(self, records: Iterable[SubmissionRecord], directory: str = ".") -> str:
        """
        Write a timestamped XLSX backup to `directory`.

        Returns:
            str: Path of the generated file. The caller removes it.
        """
        now = datetime.now().strftime("%Y-%m-%d_%H-%M")
        filename = os.path.join(directory, f"FastCommBackup_{now}.xlsx")

        wb = self.build_workbook(records)
        wb.save(filename)
        return filename
