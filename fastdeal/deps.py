"""Shared FastAPI dependencies."""

from fastapi import Depends, Request

from fastdeal.core.exceptions import ForbiddenError, UnauthorizedError
from fastdeal.core.security import load_session_cookie
from fastdeal.models.user import User
from fastdeal.services.reconciliation import ReconciliationController

SESSION_COOKIE_NAME = "fastdeal_session"


def get_controller(request: Request) -> ReconciliationController:
    return request.app.state.controller


async def get_current_user(
    request: Request,
    controller: ReconciliationController = Depends(get_controller),
) -> User:
    """Dependency: load session from cookie and return User."""
    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if not cookie:
        raise UnauthorizedError("Not authenticated")
    payload = load_session_cookie(cookie)
    if not payload:
        raise UnauthorizedError("Invalid or expired session")
    user_id = payload.get("user_id")
    if not user_id:
        raise UnauthorizedError("Invalid session")
    user = await controller.stores.users.find_by_id(str(user_id))
    if not user:
        raise UnauthorizedError("User not found")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    """Dependency: require current user to have role admin."""
    if user.role != "admin":
        raise ForbiddenError("Admin only")
    return user
