from typing import Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings
from errors import Unauthorized


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.token_secret, salt="user-token")


def generate_user_token(user_id: int) -> str:
    return _serializer().dumps({"u": user_id})


def resolve_user_token(token: Optional[str], max_age_hours: int = 24 * 30) -> int:
    """Return the user id carried by a signed token or raise ``Unauthorized``."""
    if not token:
        raise Unauthorized("Not authorized")
    try:
        data = _serializer().loads(token, max_age=max_age_hours * 3600)
    except BadSignature as exc:
        raise Unauthorized("Not authorized") from exc

    user_id = data.get("u") if isinstance(data, dict) else None
    if not isinstance(user_id, int) or user_id <= 0:
        raise Unauthorized("Not authorized")
    return user_id


def token_from_header(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None
