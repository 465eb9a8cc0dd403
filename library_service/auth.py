"""
Authentication helpers.

Passwords are hashed with werkzeug's salted PBKDF2/scrypt helpers. Tokens are
HS256 JWTs carrying the user id in ``sub``; the API layer trusts the id once
the signature and expiry check out.
"""

import logging
from datetime import datetime, timedelta, timezone

import jwt
from werkzeug.security import check_password_hash, generate_password_hash

from .errors import AuthenticationError
from .validation import validate_registration

logger = logging.getLogger(__name__)


def hash_password(password):
    return generate_password_hash(password)


def verify_password(password_hash, password):
    return check_password_hash(password_hash, password)


class TokenService:
    def __init__(self, secret, algorithm="HS256", exp_minutes=60):
        self.secret = secret
        self.algorithm = algorithm
        self.exp_minutes = exp_minutes

    def issue_token(self, user):
        now = datetime.now(timezone.utc)
        claims = {
            "sub": str(user.id),
            "email": user.email,
            "role": user.role,
            "iat": now,
            "exp": now + timedelta(minutes=self.exp_minutes),
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def decode_token(self, token):
        """Return the user id carried by ``token``."""
        try:
            claims = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token has expired")
        except jwt.InvalidTokenError:
            raise AuthenticationError("Invalid token")
        try:
            return int(claims["sub"])
        except (KeyError, TypeError, ValueError):
            raise AuthenticationError("Invalid token")


class AuthService:
    def __init__(self, users, tokens):
        self.users = users
        self.tokens = tokens

    def register(self, data):
        """Self-registration always creates a PATRON. Returns (user, token)."""
        validate_registration(data)
        user = self.users.register_patron(data)
        return user, self.tokens.issue_token(user)

    def authenticate(self, email, password):
        if not email or not password:
            raise AuthenticationError("Invalid email or password")
        user, password_hash = self.users.find_credentials(email)
        if user is None or not verify_password(password_hash, str(password)):
            logger.warning("Failed login for %s", email)
            raise AuthenticationError("Invalid email or password")
        logger.info("User %s authenticated", user.id)
        return self.tokens.issue_token(user)
