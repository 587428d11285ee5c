"""Bearer credential verification.

Credentials are HS256 JWTs carrying the user id (``sub``), the role and the
tenant the token was issued for (``tenant_id``). The identity of a request
is rebuilt from the credential on every call; nothing is cached server side.
"""

import os
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Optional

import jwt

from school_orchestrator.auth.errors import AuthError, AuthErrorKind
from school_orchestrator.auth.permissions import Role
from school_orchestrator.logging.setup import get_logger

logger = get_logger(__name__)

DEFAULT_JWT_SECRET = "change-me-in-production-to-a-secure-random-string"
DEFAULT_JWT_ALGORITHM = "HS256"
DEFAULT_TOKEN_TTL_SECONDS = 86400 * 7

REQUIRED_CLAIMS = ("sub", "role", "tenant_id", "exp")


@dataclass(frozen=True)
class Identity:
    """The authenticated actor of one request.

    Attributes:
        user_id: Subject of the verified credential.
        role: Role from the verified credential.
        tenant_claim: Tenant the credential was issued for.
    """

    user_id: str
    role: Role
    tenant_claim: str


class TokenService:
    """Issue and verify bearer credentials.

    Example:
        >>> service = TokenService(secret="s3cret")
        >>> token = service.issue("U1", Role.TEACHER, "TENANT_A")
        >>> service.authenticate(token).user_id
        'U1'
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = DEFAULT_JWT_ALGORITHM,
        ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS,
        leeway_seconds: int = 0,
    ) -> None:
        if not secret:
            raise ValueError("JWT secret must not be empty")
        self._secret = secret
        self._algorithm = algorithm
        self._ttl_seconds = ttl_seconds
        self._leeway_seconds = leeway_seconds

    def issue(
        self,
        user_id: str,
        role: Role,
        tenant_id: str,
        ttl_seconds: Optional[int] = None,
    ) -> str:
        """Create a signed credential for a user.

        Args:
            user_id: User identifier (``sub``).
            role: Role granted by the credential.
            tenant_id: Tenant the credential is issued for.
            ttl_seconds: Lifetime override; negative values yield an
                already expired token.

        Returns:
            Encoded JWT.
        """
        now = int(time.time())
        ttl = self._ttl_seconds if ttl_seconds is None else ttl_seconds
        payload = {
            "sub": user_id,
            "role": Role(role).value,
            "tenant_id": tenant_id,
            "iat": now,
            "exp": now + ttl,
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def authenticate(self, credential: Optional[str]) -> Identity:
        """Verify a credential and extract the identity from its claims.

        Args:
            credential: Raw token, optionally prefixed with ``Bearer ``.

        Returns:
            Verified identity.

        Raises:
            AuthError: MISSING, INVALID or EXPIRED.
        """
        token = _strip_scheme(credential)
        if not token:
            raise AuthError(AuthErrorKind.MISSING)

        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                leeway=self._leeway_seconds,
                options={"require": list(REQUIRED_CLAIMS)},
            )
        except jwt.ExpiredSignatureError as e:
            logger.info(
                "Expired credential rejected",
                extra={"event": "auth_failed", "reason": "expired"},
            )
            raise AuthError(AuthErrorKind.EXPIRED) from e
        except jwt.InvalidTokenError as e:
            logger.warning(
                "Invalid credential rejected",
                extra={"event": "auth_failed", "reason": "invalid", "error": str(e)},
            )
            raise AuthError(AuthErrorKind.INVALID) from e

        user_id = claims.get("sub")
        tenant_claim = claims.get("tenant_id")
        if not isinstance(user_id, str) or not user_id:
            raise AuthError(AuthErrorKind.INVALID)
        if not isinstance(tenant_claim, str) or not tenant_claim:
            raise AuthError(AuthErrorKind.INVALID)

        try:
            role = Role(claims.get("role"))
        except ValueError as e:
            logger.warning(
                "Credential with unknown role rejected",
                extra={"event": "auth_failed", "reason": "unknown_role"},
            )
            raise AuthError(AuthErrorKind.INVALID) from e

        return Identity(user_id=user_id, role=role, tenant_claim=tenant_claim)


def _strip_scheme(credential: Optional[str]) -> str:
    if credential is None:
        return ""
    value = credential.strip()
    if value[:7].lower() == "bearer ":
        value = value[7:].strip()
    return value


_token_service: Optional[TokenService] = None
_token_service_lock = threading.Lock()


def get_token_service() -> TokenService:
    """Get the process-wide token service configured from the environment.

    Reads ORCHESTRATOR_JWT_SECRET, ORCHESTRATOR_JWT_ALGORITHM and
    ORCHESTRATOR_JWT_TTL_SECONDS.
    """
    global _token_service

    with _token_service_lock:
        if _token_service is None:
            _token_service = TokenService(
                secret=os.getenv("ORCHESTRATOR_JWT_SECRET", DEFAULT_JWT_SECRET),
                algorithm=os.getenv("ORCHESTRATOR_JWT_ALGORITHM", DEFAULT_JWT_ALGORITHM),
                ttl_seconds=int(
                    os.getenv(
                        "ORCHESTRATOR_JWT_TTL_SECONDS", str(DEFAULT_TOKEN_TTL_SECONDS)
                    )
                ),
            )

    return _token_service


def reset_token_service() -> None:
    """Reset the global token service (for testing)."""
    global _token_service
    with _token_service_lock:
        _token_service = None
