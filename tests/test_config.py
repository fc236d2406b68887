import json

import pytest

from config import load_oauth_client, load_settings, resolve_webhook_url


@pytest.mark.parametrize(
    "env, expected",
    [
        ({"WEBHOOK_URL": "https://hooks.example/jf"}, "https://hooks.example/jf"),
        ({"PUBLIC_URL": "bot.example.com"}, "https://bot.example.com/webhook/jotform"),
        ({"REPL_SLUG": "fastcomm", "REPL_OWNER": "acme"}, "https://fastcomm.acme.repl.co/webhook/jotform"),
        ({"RAILWAY_PUBLIC_DOMAIN": "fc.up.railway.app"}, "https://fc.up.railway.app/webhook/jotform"),
        ({"RENDER_EXTERNAL_URL": "https://fc.onrender.com/"}, "https://fc.onrender.com/webhook/jotform"),
        ({}, ""),
    ],
)
def test_resolve_webhook_url(env, expected):
    assert resolve_webhook_url(env) == expected


@pytest.mark.parametrize("shape", ["web", "installed"])
def test_load_oauth_client_shapes(shape):
    raw = json.dumps({shape: {"client_id": "cid", "client_secret": "secret"}})

    assert load_oauth_client(raw) == ("cid", "secret")


def test_load_oauth_client_invalid():
    assert load_oauth_client("{broken") == ("", "")
    assert load_oauth_client(None) == ("", "")


def test_load_settings_from_env():
    settings = load_settings({
        "TOKEN": "abc",
        "ADMIN_USER_IDS": "1, 2,x",
        "ADMIN_GUILD_ID": "100",
        "NOTIFICATION_CHANNEL_ID": "not-a-number",
        "PORT": "8080",
        "STATUS_RECHECK_SECONDS": "5",
    })

    assert settings.token == "abc"
    assert settings.admin_user_ids == frozenset({1, 2})
    assert settings.admin_guild_id == 100
    assert settings.admin_role_id is None
    assert settings.notification_channel_id is None
    assert settings.port == 8080
    assert settings.status_recheck_seconds == 5.0
    assert settings.github_backup_path == "backups"
    assert settings.webhook_url == ""


def test_load_settings_defaults():
    settings = load_settings({})

    assert settings.port == 5000
    assert settings.display_timezone == "Asia/Singapore"
    assert settings.status_recheck_seconds == 30.0
