"""
api/routes/v1/admin.py -- Moderation-exemption admin endpoints.

Admins are the account ids listed in ADMIN_USER_IDS; AccountService holds the
allow-list and raises Forbidden for everyone else.
"""

from fastapi import APIRouter, Depends, Query, Request

from api.models import AccountResponse, AuditExemptionUpdate, ok
from auth.dependencies import get_identity, try_get_identity
from auth.service import AccountService

# Auth policy:
# - GET/POST /api/v1/admin/user-audit: requires auth + admin allow-list
# Router-level dependency enforces auth; the service enforces the allow-list.
router = APIRouter(dependencies=[Depends(get_identity)])


@router.get("/admin/user-audit")
async def lookup_user(request: Request, query: str = Query(default="", max_length=100)) -> dict:
    """Find an account by id or username and report its moderation exemption."""
    accounts: AccountService = request.app.state.account_service
    account = await accounts.lookup_account(try_get_identity(request), query.strip())
    return ok({"user": AccountResponse.from_account(account).model_dump()})


@router.post("/admin/user-audit")
async def set_user_audit(request: Request, body: AuditExemptionUpdate) -> dict:
    """Grant or revoke the noContentAudit moderation exemption."""
    accounts: AccountService = request.app.state.account_service
    account = await accounts.set_content_audit_exemption(
        try_get_identity(request), body.user_id, body.no_content_audit
    )
    return ok(
        {"user": AccountResponse.from_account(account).model_dump()},
        message="User permissions updated.",
    )
