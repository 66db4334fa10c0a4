import time
from typing import Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings

CSRF_HEADER = "X-CSRF-Token"


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.csrf_secret, salt="csrf-token")


def _user_id(user_id: Optional[str]) -> str:
    return user_id if user_id is not None else get_settings().user_id


def generate_csrf_token(user_id: Optional[str] = None, max_age_hours: int = 2) -> str:
    expiry = int(time.time()) + max_age_hours * 3600
    return _serializer().dumps({"u": _user_id(user_id), "exp": expiry})


def validate_csrf_token(
    token: Optional[str], user_id: Optional[str] = None, max_age_hours: int = 2
) -> bool:
    if not token:
        return False
    try:
        data = _serializer().loads(token, max_age=max_age_hours * 3600)
    except BadSignature:
        return False

    if data.get("u") != _user_id(user_id):
        return False
    return int(time.time()) <= data.get("exp", 0)
