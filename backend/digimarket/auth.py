"""Bearer-token identity for the API.

Tokens are issued elsewhere; this module only resolves them to a ``User`` and
offers the role guards the segments use.
"""

from __future__ import annotations

from flask_login import current_user

from digimarket.extensions import db, login_manager
from digimarket.jwt_utils import decode_token, get_bearer_token
from digimarket.models import SellerProfile, User
from digimarket.utils.errors import AuthError, ForbiddenError


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


@login_manager.request_loader
def load_user_from_request(req):
    token = get_bearer_token(req.headers.get("Authorization", ""))
    if not token:
        return None
    payload = decode_token(token)
    if not payload:
        return None
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        return None
    return db.session.get(User, user_id)


def require_user() -> User:
    if not current_user or not current_user.is_authenticated:
        raise AuthError("Sign in to continue")
    return current_user._get_current_object()


def require_admin() -> User:
    user = require_user()
    if not user.is_admin:
        raise ForbiddenError("Admin access required")
    return user


def require_seller() -> SellerProfile:
    user = require_user()
    seller = SellerProfile.query.filter_by(user_id=user.id).first()
    if seller is None or not user.is_seller:
        raise ForbiddenError("Seller access required")
    return seller
