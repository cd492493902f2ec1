"""
Principal resolution. Token parsing happens upstream: the gateway forwards the
authenticated user as a JSON x-user header, e.g.
{"id": "42", "role": "restaurant", "restaurant_id": "r-1"}.
"""
import json
from typing import Mapping

from pydantic import ValidationError as PydanticValidationError

from app.config import Settings
from app.errors import Forbidden, Unauthorized
from app.models import Principal, Role

USER_HEADER = "x-user"


def principal_from_headers(headers: Mapping[str, str], settings: Settings) -> Principal:
    raw = headers.get(USER_HEADER) or settings.local_principal
    if not raw:
        raise Unauthorized("No user data provided")
    try:
        return Principal.model_validate(json.loads(raw))
    except (json.JSONDecodeError, PydanticValidationError) as e:
        raise Unauthorized("Malformed user data") from e


def require_role(principal: Principal, *roles: Role) -> Principal:
    if principal.role not in roles:
        raise Forbidden("You do not have the role required to access this resource")
    if principal.role == Role.RESTAURANT and not principal.restaurant_id:
        raise Forbidden("No restaurant is associated with your account")
    return principal
