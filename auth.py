from typing import Optional

from fastapi import Header, HTTPException
from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.auth_secret, salt="auth-token")


def issue_token(user_id: str) -> str:
    """Sign a user id; called by the login service that owns credentials."""
    return _serializer().dumps({"u": str(user_id)})


def verify_token(token: str, max_age_hours: Optional[int] = None) -> Optional[str]:
    if max_age_hours is None:
        max_age_hours = get_settings().token_max_age_hours
    try:
        data = _serializer().loads(token, max_age=max_age_hours * 3600)
    except BadSignature:
        return None
    user_id = data.get("u") if isinstance(data, dict) else None
    if not user_id:
        return None
    return str(user_id)


def get_current_user_id(authorization: Optional[str] = Header(default=None)) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="No token, authorization denied")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Token is not valid")
    user_id = verify_token(token.strip())
    if user_id is None:
        raise HTTPException(status_code=401, detail="Token is not valid")
    return user_id
