"""
Admin guard

Admin endpoints take the shared ADMIN_TOKEN as a bearer token. With no
ADMIN_TOKEN configured every admin call is refused.
"""
import hmac
from typing import Optional

from fastapi import Header, Request

from errors import Unauthorized


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def require_admin(request: Request, authorization: Optional[str] = Header(None)) -> None:
    expected = request.app.state.settings.admin_token
    supplied = bearer_token(authorization)
    if not expected or not supplied or not hmac.compare_digest(supplied.encode(), expected.encode()):
        raise Unauthorized()
