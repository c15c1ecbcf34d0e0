"""
V1 API router aggregation.

All versioned endpoint routers are mounted here under a common prefix.
The top-level ``main.py`` mounts this router at ``/api/v1``.
"""

from fastapi import APIRouter

from autoledger.api.v1.endpoints import audit, commitments, groups, investors, staff

api_router = APIRouter()

api_router.include_router(investors.router, prefix="/investors", tags=["Investors"])
api_router.include_router(groups.router, prefix="/groups", tags=["Approval groups"])
api_router.include_router(commitments.router, prefix="/commitments", tags=["Commitments"])
api_router.include_router(audit.router, prefix="/audit", tags=["Audit"])

# Staff router defines its own full paths (/admins, /managers).
api_router.include_router(staff.router, tags=["Staff"])
