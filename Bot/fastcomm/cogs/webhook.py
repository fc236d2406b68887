# ==========================================
# fastcomm/cogs/webhook.py
# HTTP endpoint receiving Jotform submissions
#
# Responsibilities:
# - Run an aiohttp web server inside the bot's event loop
# - POST /webhook/jotform: extract submission id + session token and
#   hand them to SubmissionWorkflow.process_submission
# - GET /: health check for the hosting platform
#
# Handled outcomes (including "unmatched" and "already processed") are
# answered with 200 so Jotform does not retry; 500 is reserved for
# unexpected failures.
# ==========================================

import json
import logging
from typing import Any

from aiohttp import web
from discord.ext import commands

from config import WEBHOOK_PATH
from fastcomm.services.jotform_service import extract_session_token
from fastcomm.services.workflow import SubmissionWorkflow
from fastcomm.utils.parsing import first_value

logger = logging.getLogger(__name__)


async def read_payload(request: web.Request) -> dict[str, Any]:
    """
    Form fields of a webhook request as a plain dict.

    Jotform posts multipart/form-data; urlencoded and JSON bodies are
    accepted too. File parts are ignored.
    """
    if request.content_type == "application/json":
        try:
            data = await request.json()
        except json.JSONDecodeError:
            return {}
        return data if isinstance(data, dict) else {}

    form = await request.post()
    return {key: value for key, value in form.items() if isinstance(value, str)}


def create_webhook_app(workflow: SubmissionWorkflow) -> web.Application:
    """aiohttp application exposing the Jotform webhook and a health check."""

    async def health(request: web.Request) -> web.Response:
        return web.json_response({"status": "ok", "service": "fastcomm"})

    async def jotform_webhook(request: web.Request) -> web.Response:
        try:
            payload = await read_payload(request)
            submission_id = first_value(payload, "submissionID", "submission_id")
            session_token = extract_session_token(payload.get("rawRequest")) or extract_session_token(payload)

            logger.info("📨 Webhook received: submission=%s token=%s", submission_id or "-", session_token or "-")
            outcome = await workflow.process_submission(submission_id, session_token, trigger="webhook")
        except Exception:
            logger.exception("❌ Webhook processing error")
            return web.json_response({"success": False, "message": "Internal error"}, status=500)

        logger.info("Webhook outcome for %s: %s", submission_id or "-", outcome.status.value)
        return web.json_response({"success": True, "message": outcome.status.value})

    app = web.Application()
    app.router.add_get("/", health)
    app.router.add_post(WEBHOOK_PATH, jotform_webhook)
    return app


class WebhookCog(commands.Cog):
    """
    Owns the aiohttp runner. The server starts when the cog loads and is
    torn down when it unloads.
    """

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.settings = bot.services.settings
        self.app = create_webhook_app(bot.services.workflow)
        self.runner: web.AppRunner | None = None

    async def cog_load(self):
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, self.settings.webhook_host, self.settings.port)
        await site.start()
        logger.info("🌐 Webhook server listening on %s:%s", self.settings.webhook_host, self.settings.port)
        if self.settings.webhook_url:
            logger.info("🔗 Jotform webhook URL: %s", self.settings.webhook_url)
        else:
            logger.warning("No public webhook URL configured; uploads are picked up by status checks only")

    async def cog_unload(self):
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None


async def setup(bot: commands.Bot):
    await bot.add_cog(WebhookCog(bot))
