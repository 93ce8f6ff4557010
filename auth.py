from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, HTTPException
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings


class Unauthorized(Exception):
    pass


@dataclass(frozen=True)
class Identity:
    uid: str
    name: Optional[str] = None


class IdentityVerifier:
    """Verifies bearer credentials minted by the identity bridge.

    Tokens are itsdangerous-signed payloads of ``{"sub": ..., "name": ...}``.
    """

    def __init__(self, secret: str, max_age_secs: int = 3600) -> None:
        self.max_age_secs = max_age_secs
        self._serializer = URLSafeTimedSerializer(secret, salt="identity")

    def issue_token(self, uid: str, name: Optional[str] = None) -> str:
        return self._serializer.dumps({"sub": uid, "name": name})

    def verify(self, token: Optional[str]) -> Identity:
        if not token:
            raise Unauthorized("No token provided")
        try:
            data = self._serializer.loads(token, max_age=self.max_age_secs)
        except SignatureExpired as exc:
            raise Unauthorized("Token expired") from exc
        except BadSignature as exc:
            raise Unauthorized("Invalid token") from exc

        if not isinstance(data, dict):
            raise Unauthorized("Invalid token")
        uid = data.get("sub")
        if not isinstance(uid, str) or not uid:
            raise Unauthorized("Invalid token")
        name = data.get("name")
        return Identity(uid=uid, name=name if isinstance(name, str) else None)


@lru_cache(maxsize=1)
def get_identity_verifier() -> IdentityVerifier:
    settings = get_settings()
    return IdentityVerifier(
        settings.identity_secret, max_age_secs=settings.identity_max_age_secs
    )


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def current_identity(
    authorization: Optional[str] = Header(default=None),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
) -> Identity:
    try:
        return verifier.verify(bearer_token(authorization))
    except Unauthorized as exc:
        raise HTTPException(
            status_code=401,
            detail=f"Unauthorized: {exc}",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
