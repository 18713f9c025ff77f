from __future__ import annotations

from sandbox_context.api.capabilities import IdentityCapability
from sandbox_context.state import SimulatedUser

__all__ = ["SimulatedUser", "current", "is_current_user_admin"]


def current(ctx: IdentityCapability) -> SimulatedUser | None:
    """The user logged in on ``ctx``, or None."""
    return ctx.current_user()


def is_current_user_admin(ctx: IdentityCapability) -> bool:
    user = ctx.current_user()
    return user is not None and user.admin
