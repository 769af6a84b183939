"""
============================================================================
FILE: auth.py
LOCATION: reconciler/auth.py
============================================================================

PURPOSE:
    Firebase ID-token verification and the platform-admin guard for the
    operator endpoints.

ROLE IN PROJECT:
    Every route in router.py depends on require_platform_admin. The caller's
    role is read from the hierarchy (platformAdmins/{uid}) through the lookup
    service, not from token claims.

KEY COMPONENTS:
    - verify_firebase_token(): Verify a bearer token with Firebase Auth
    - get_current_location(): Dependency returning the caller's UserLocation
    - require_platform_admin(): Dependency rejecting everyone else

DEPENDENCIES:
    - External: fastapi, firebase_admin (through config.get_auth)
    - Internal: config, lookup, models

USAGE:
    @router.get("/api/reconcile/log")
    def list_log(admin: UserLocation = Depends(require_platform_admin)):
        ...
============================================================================
"""
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from reconciler.config import get_auth, get_db
from reconciler.logging_config import get_logger
from reconciler.lookup import UserLookupService
from reconciler.models import UserLocation


logger = get_logger("auth")

security = HTTPBearer()


def verify_firebase_token(token: str) -> dict:
    """
    Verify a Firebase ID token and return decoded claims.

    Raises:
        HTTPException: 401 if the token is invalid, expired or revoked
    """
    auth_client = get_auth()
    try:
        # Allow 10 seconds of clock skew to prevent "Token used too early" errors
        return auth_client.verify_id_token(token, clock_skew_seconds=10)
    except (auth_client.InvalidIdTokenError, ValueError) as exc:
        logger.info("Rejected token: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid authentication token: {exc}",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
    except Exception as exc:
        # Certificate fetch and other verification failures
        logger.warning("Token verification failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Authentication failed: {exc}",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


def get_lookup_service(db=Depends(get_db)) -> UserLookupService:
    return UserLookupService(db)


def get_current_location(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    lookup: UserLookupService = Depends(get_lookup_service),
) -> UserLocation:
    """Resolve the caller to their location in the hierarchy."""
    decoded_token = verify_firebase_token(credentials.credentials)
    uid = decoded_token.get("uid")
    if not uid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token missing uid claim",
            headers={"WWW-Authenticate": "Bearer"},
        )

    location = lookup.find_user_by_id(uid)
    if location is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User not found in institution hierarchy",
        )
    return location


def require_platform_admin(
    location: UserLocation = Depends(get_current_location),
) -> UserLocation:
    """Dependency that requires the platform_admin role."""
    if location.role != "platform_admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Platform admin access required",
        )
    return location
