from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from clinicbook.core.db import async_session_maker
from clinicbook.core.security import ANONYMOUS, Caller, decode_access_token
from clinicbook.models.user import UserRole
from clinicbook.services.scheduler import AppointmentScheduler

optional_bearer = HTTPBearer(auto_error=False)


@lru_cache
def get_scheduler() -> AppointmentScheduler:
    # One instance per process so the per-doctor locks are shared by all requests
    return AppointmentScheduler(async_session_maker)


async def get_caller(
    credentials: HTTPAuthorizationCredentials | None = Depends(optional_bearer),
) -> Caller:
    """Anonymous callers are public patients booking from the clinic page."""
    if not credentials:
        return ANONYMOUS
    caller = decode_access_token(credentials.credentials) if credentials.scheme.lower() == "bearer" else None
    if not caller:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return caller


def ensure_can_edit_schedule(caller: Caller, doctor_id: int) -> None:
    if caller.role in (UserRole.ADMIN, UserRole.CLINIC):
        return
    if caller.role == UserRole.DOCTOR and caller.user_id == doctor_id:
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Not authorized to change this doctor's schedule",
    )
