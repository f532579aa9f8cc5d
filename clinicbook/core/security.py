from dataclasses import dataclass

from jose import JWTError, jwt

from clinicbook.core.config import settings


@dataclass(frozen=True)
class Caller:
    user_id: int | None
    role: str | None


ANONYMOUS = Caller(user_id=None, role=None)


def decode_access_token(token: str) -> Caller | None:
    """Read identity from an access token issued by the auth service."""
    try:
        payload = jwt.decode(
            token, settings.secret_key, algorithms=[settings.algorithm]
        )
        if payload.get("type") != "access":
            return None
        sub = payload.get("sub")
        if not sub:
            return None
        return Caller(user_id=int(sub), role=payload.get("role"))
    except (JWTError, ValueError):
        return None
