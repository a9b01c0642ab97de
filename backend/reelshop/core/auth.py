"""Request identity supplied by the upstream auth layer.

Token validation happens before requests reach this service; the auth layer
stores the caller's ids on ``request.state``.
"""

from fastapi import HTTPException, Request, status


def get_admin_id(request: Request) -> str:
    """Admin id of the caller; 401 when the request is not an admin's."""
    admin_id = getattr(request.state, "admin_id", None)
    if admin_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin authentication required",
        )
    return str(admin_id)
