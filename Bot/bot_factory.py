# bot_factory.py
# -------------------------------------------------
# Factory module responsible for creating the Discord bot instance
# and the services it shares between cogs.
#
# Responsibilities:
# - Instantiate commands.Bot with correct intents
# - Build the service container (sessions, tracker, gateways,
#   repository, workflow) from Settings
# - Wire the workflow's notifier to the notification channel
#
# This file should NOT:
# - Load cogs/extensions
# - Contain command logic
# -------------------------------------------------

from dataclasses import dataclass

from discord.ext import commands

from config import INTENTS, SETTINGS, Settings
from fastcomm.services.completion import CompletionTracker
from fastcomm.services.drive_service import DriveService
from fastcomm.services.export_service import ExportService
from fastcomm.services.jotform_service import JotformService
from fastcomm.services.repository import FastCommissionSettings, GitHubContentStore, SubmissionRepository
from fastcomm.services.sessions import SessionStore
from fastcomm.services.transfer_service import DocumentTransferService
from fastcomm.services.workflow import SubmissionWorkflow
from fastcomm.ui.notifier import ChannelNotifier


@dataclass
class ServiceContainer:
    """Everything the cogs share. One instance per process."""
    settings: Settings
    store: SessionStore
    tracker: CompletionTracker
    forms: JotformService
    drive: DriveService
    transfer: DocumentTransferService
    repository: SubmissionRepository
    fast_settings: FastCommissionSettings
    exporter: ExportService
    workflow: SubmissionWorkflow


def build_services(settings: Settings) -> ServiceContainer:
    """
    Build the service graph from settings.

    The workflow is created without a notifier; create_bot() attaches
    one once the bot exists.
    """
    github = GitHubContentStore(settings.github_owner, settings.github_repo, settings.github_token)
    repository = SubmissionRepository(github, settings.github_backup_path)
    fast_settings = FastCommissionSettings(github, settings.github_backup_path)

    forms = JotformService(settings.jotform_api_key, settings.jotform_template_id, settings.webhook_url)
    drive = DriveService(settings.google_client_id, settings.google_client_secret, settings.drive_refresh_token)
    transfer = DocumentTransferService(forms, drive)

    store = SessionStore()
    tracker = CompletionTracker()
    workflow = SubmissionWorkflow(
        store,
        tracker,
        forms,
        transfer,
        repository,
        recheck_delay=settings.status_recheck_seconds,
    )

    return ServiceContainer(
        settings=settings,
        store=store,
        tracker=tracker,
        forms=forms,
        drive=drive,
        transfer=transfer,
        repository=repository,
        fast_settings=fast_settings,
        exporter=ExportService(fast_settings),
        workflow=workflow,
    )


def create_bot(settings: Settings = SETTINGS) -> commands.Bot:
    """
    Create and return the configured Discord bot instance.

    The shared services are attached as `bot.services`; cogs read them
    from there instead of building their own clients.
    """

    # Slash commands only; the prefix is required by commands.Bot
    bot = commands.Bot(
        command_prefix="!",
        intents=INTENTS,
    )

    services = build_services(settings)
    services.workflow.set_notifier(
        ChannelNotifier(bot, settings.notification_channel_id, services.fast_settings, settings.display_timezone)
    )
    bot.services = services

    return bot
