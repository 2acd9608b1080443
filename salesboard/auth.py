import json
import logging

from cryptography.fernet import Fernet, InvalidToken
from werkzeug.security import check_password_hash, generate_password_hash

from salesboard.constants import ROLE_ADMIN, ROLE_CLIENT, TOKEN_TTL_SECONDS

logger = logging.getLogger(__name__)

DEFAULT_USERS = [
    ("admin", ROLE_ADMIN),
    ("client", ROLE_CLIENT),
]


class AuthError(Exception):
    """
    Raised when a request cannot be authenticated or authorised.

    Attributes:
        status (int): The HTTP status the error maps to (401 or 403).
    """

    def __init__(self, message, status=403):
        super().__init__(message)
        self.status = status


class TokenIssuer:
    """
    Issues and verifies signed, expiring access tokens.

    Tokens are Fernet tokens whose payload is the user's id, username and role;
    Fernet embeds the issue time, so expiry is enforced on decryption.
    """

    def __init__(self, secret_key, ttl: int = TOKEN_TTL_SECONDS):
        """
        Args:
            secret_key (str | bytes): A urlsafe base64-encoded 32-byte Fernet key.
            ttl (int): Token lifetime in seconds.
        """
        self.fernet = Fernet(secret_key)
        self.ttl = ttl

    def issue(self, user: dict) -> str:
        payload = {"id": user["id"], "username": user["username"], "role": user["role"]}
        return self.fernet.encrypt(json.dumps(payload).encode("utf-8")).decode("utf-8")

    def verify(self, token: str) -> dict:
        """
        Returns the token payload.

        Raises:
            AuthError: If the token is malformed, tampered with or expired.
        """
        try:
            payload = self.fernet.decrypt(token.encode("utf-8"), ttl=self.ttl)
        except (InvalidToken, ValueError, AttributeError):
            raise AuthError("Invalid or expired token", status=403)
        return json.loads(payload)


def authenticate(store, username: str, password: str) -> dict:
    """
    Checks a username and password against the stored hash.

    Returns:
        dict: The user's id, username and role.

    Raises:
        AuthError: With status 401 when the credentials do not match.
    """
    user = store.get_user(username or "")
    if not user or not check_password_hash(user["password_hash"], password or ""):
        logger.info(f"Failed login attempt for user {username}")
        raise AuthError("Invalid credentials", status=401)
    return {"id": user["id"], "username": user["username"], "role": user["role"]}


def seed_users(store, password: str) -> list:
    """Creates or resets the default admin and client users with ``password``."""
    seeded = []
    for username, role in DEFAULT_USERS:
        store.save_user(username, generate_password_hash(password), role)
        seeded.append(username)
        logger.info(f"Seeded user {username} ({role})")
    return seeded


def bearer_token(authorization_header: str):
    """Extracts the token from an 'Authorization: Bearer <token>' header value."""
    if not authorization_header:
        return None
    parts = authorization_header.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None
