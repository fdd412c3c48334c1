from typing import Annotated, Optional
from fastapi import Depends, Header, Request, HTTPException, status
from uuid import UUID
from vetcare.common.context import ClinicContext


def get_branch_id(request: Request) -> UUID:
    """Extract branch_id from request state set by BranchMiddleware"""
    if not hasattr(request.state, 'branch_id'):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Branch context not found. Ensure X-Branch-ID header is provided."
        )
    return request.state.branch_id


def get_clinic_context(
    request: Request,
    x_user_id: Optional[str] = Header(None, alias="X-User-ID")
) -> ClinicContext:
    """
    Build the explicit clinic context for a request.
    The user id is asserted by the upstream auth provider.
    """
    branch_id = get_branch_id(request)

    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-ID header"
        )
    try:
        user_id = UUID(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid X-User-ID format. Must be a valid UUID"
        )

    return ClinicContext(user_id=user_id, branch_id=branch_id)


ClinicContextDep = Annotated[ClinicContext, Depends(get_clinic_context)]
