from fastapi import Request

from app.auth import principal_from_headers
from app.models import Principal
from app.services import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_principal(request: Request) -> Principal:
    return principal_from_headers(request.headers, get_services(request).settings)
