"""
api/routes/v1/audit.py -- Read access to the audit trail.

GET /api/v1/audit-logs -- paginated, newest first (AdminOnly).

Entries are written by api.middleware.audit_requests; there is no endpoint
that edits or deletes them.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import AuditEntryResponse, Page
from api.pagination import Pagination, get_pagination
from audit.store import AuditStore
from auth.dependencies import require_admin
from auth.models import User

router = APIRouter()


@router.get("/audit-logs", response_model=Page[AuditEntryResponse])
def list_audit_logs(
    request: Request,
    pagination: Pagination = Depends(get_pagination),
    current_user: User = Depends(require_admin),
) -> Page[AuditEntryResponse]:
    store: AuditStore = request.app.state.audit_store
    entries = store.list_entries(limit=pagination.limit, offset=pagination.offset)
    return Page[AuditEntryResponse].build(
        [AuditEntryResponse.from_entry(e) for e in entries],
        store.count(),
        pagination.page,
        pagination.limit,
        request.url.path,
    )
