"""
api/routes/admin.py -- User administration endpoints.

Routes:
  PUT /api/admin/users/{user_id}/roles/admin -- grant ROLE_ADMIN (operation "users.grant_admin")

Role requirements live in auth.dependencies.OPERATION_ROLES; routes only
name their operation.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import UserResponse
from auth.dependencies import require_operation
from auth.errors import unwrap
from auth.models import ROLE_ADMIN, AuthContext

router = APIRouter()


@router.put("/admin/users/{user_id}/roles/admin", response_model=UserResponse)
def grant_admin_role(
    request: Request,
    user_id: int,
    context: AuthContext = Depends(require_operation("users.grant_admin")),
) -> UserResponse:
    """Grant ROLE_ADMIN to a user. Idempotent if the user is already an admin."""
    user = unwrap(request.app.state.authenticator.grant_role(user_id, ROLE_ADMIN))
    return UserResponse.from_user(user)
