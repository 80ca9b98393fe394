from typing import Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.token_secret, salt="access-token")


def issue_access_token(user_id: int) -> str:
    return _serializer().dumps({"u": user_id})


def verify_access_token(token: str, max_age_hours: Optional[int] = None) -> Optional[int]:
    """Return the user id carried by ``token``, or None when it is not valid."""
    if max_age_hours is None:
        max_age_hours = get_settings().token_max_age_hours
    try:
        data = _serializer().loads(token, max_age=max_age_hours * 3600)
    except BadSignature:
        return None

    user_id = data.get("u") if isinstance(data, dict) else None
    if not isinstance(user_id, int):
        return None
    return user_id
