"""
fastcomm/utils/permissions.py

Centralized permission helpers.

This module defines the operator allowlist check used by the
administrative command surface. Keeping it here avoids duplication
across cogs and keeps permission behavior consistent.
"""

import discord


def is_operator(user: discord.abc.User, guild_id: int | None, admin_user_ids: frozenset[int],
                admin_guild_id: int | None, admin_role_id: int | None) -> bool:
    """
    Determine whether a user may run administrative actions.

    Authorization is granted if the user is:
    - Listed in the configured operator user ids
    - Holding the configured role, inside the configured admin guild

    Args:
        user: The invoking user (a Member when invoked inside a guild)
        guild_id: Guild the interaction happened in, if any
        admin_user_ids: Explicit operator ids
        admin_guild_id: Guild in which the role grants access
        admin_role_id: Role granting access

    Returns:
        True if the user is authorized, otherwise False
    """
    # Explicit allowlist wins everywhere
    if user.id in admin_user_ids:
        return True

    # Role check only counts inside the admin guild
    if admin_guild_id is None or admin_role_id is None or guild_id != admin_guild_id:
        return False

    roles = getattr(user, "roles", None) or []
    return any(role.id == admin_role_id for role in roles)
