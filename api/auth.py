"""
Authentication dependencies for the FastAPI routes.
"""

from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from api.database import CatalogServices

# Errors are raised by the authorization gate, not by the scheme itself
security = HTTPBearer(auto_error=False)


def get_services(request: Request) -> CatalogServices:
    """Catalog services attached to the application at startup."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not available"
        )
    return services


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    services: CatalogServices = Depends(get_services),
) -> str:
    """
    Resolve the bearer token to a user id.
    
    Raises:
        UnauthenticatedError: missing, malformed, forged or expired token
    """
    header = f"{credentials.scheme} {credentials.credentials}" if credentials else None
    return services.gate.authenticate(header)
