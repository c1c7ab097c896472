from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Literal

import httpx
import jwt
from fastapi import HTTPException, status
from jwt import InvalidTokenError, PyJWK

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger("app.auth")

Role = Literal["admin", "agent", "user"]
Capability = Literal[
    "properties:read",
    "properties:import",
    "properties:status",
    "ilist:sync",
    "ilist:configure",
]

ROLE_CAPABILITIES: dict[str, frozenset[str]] = {
    "user": frozenset({"properties:read"}),
    "agent": frozenset({"properties:read", "properties:import", "properties:status"}),
    "admin": frozenset(
        {
            "properties:read",
            "properties:import",
            "properties:status",
            "ilist:sync",
            "ilist:configure",
        }
    ),
}


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: Role = "user"
    claims: dict[str, Any] = field(default_factory=dict)


def role_from_claims(claims: dict[str, Any]) -> Role:
    """Resolve the application role from identity-provider claims.

    Hosted providers put custom roles in different places: ``public_metadata`` /
    ``metadata`` (session token templates) or ``app_metadata`` (Supabase-style).
    A bare ``role`` claim is only trusted when it names one of our roles, since
    some providers use it for their own purposes (e.g. ``authenticated``).
    """
    candidates: list[Any] = [claims.get("user_role"), claims.get("role")]
    for container_key in ("public_metadata", "metadata", "app_metadata"):
        container = claims.get(container_key)
        if isinstance(container, dict):
            candidates.append(container.get("role"))

    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip().lower() in ROLE_CAPABILITIES:
            return candidate.strip().lower()  # type: ignore[return-value]
    return "user"


class CapabilityChecker:
    def __init__(self, role_capabilities: dict[str, frozenset[str]] | None = None) -> None:
        self._role_capabilities = role_capabilities or ROLE_CAPABILITIES

    def capabilities_for(self, principal: Principal) -> frozenset[str]:
        return self._role_capabilities.get(principal.role, frozenset())

    def has(self, principal: Principal, capability: Capability) -> bool:
        return capability in self.capabilities_for(principal)

    def require(self, principal: Principal, capability: Capability) -> None:
        if self.has(principal, capability):
            return
        logger.warning(
            "auth.capability.denied",
            extra={"user_id": principal.user_id, "role": principal.role, "capability": capability},
        )
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Agent or admin access required")


class JWTVerifier:
    def __init__(
        self,
        *,
        issuer: str,
        audience: str | None,
        jwks_url: str,
        algorithms: tuple[str, ...],
        jwks_cache_ttl_seconds: int,
        clock_skew_seconds: int,
    ) -> None:
        self.issuer = issuer
        self.audience = audience
        self.jwks_url = jwks_url
        self.algorithms = algorithms
        self.jwks_cache_ttl_seconds = jwks_cache_ttl_seconds
        self.clock_skew_seconds = clock_skew_seconds

        self._jwks: dict[str, Any] | None = None
        self._jwks_loaded_at: float = 0.0

    def _fetch_jwks(self) -> dict[str, Any]:
        now = time.time()
        if self._jwks and (now - self._jwks_loaded_at) < self.jwks_cache_ttl_seconds:
            return self._jwks

        logger.info("auth.jwks.fetch", extra={"jwks_url": self.jwks_url})
        response = httpx.get(self.jwks_url, timeout=5.0)
        response.raise_for_status()
        try:
            jwks = response.json()
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="invalid jwks response",
            ) from exc
        if not isinstance(jwks, dict) or not isinstance(jwks.get("keys"), list):
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="invalid jwks response"
            )

        self._jwks = jwks
        self._jwks_loaded_at = now
        logger.info("auth.jwks.fetch.success", extra={"keys_count": len(jwks["keys"])})
        return jwks

    def _find_key(self, jwks: dict[str, Any], kid: str | None) -> Any | None:
        for key in jwks["keys"]:
            if key.get("kid") == kid:
                return PyJWK.from_dict(key).key
        return None

    def _get_signing_key(self, token: str) -> Any:
        header = jwt.get_unverified_header(token)
        kid = header.get("kid")
        alg = header.get("alg")

        if alg not in self.algorithms:
            logger.warning("auth.token.invalid_algorithm", extra={"alg": alg, "allowed": list(self.algorithms)})
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token algorithm")

        key = self._find_key(self._fetch_jwks(), kid)
        if key is not None:
            return key

        # Keys may have rotated since the cache was filled.
        self._jwks = None
        logger.info("auth.jwks.kid_miss.refresh", extra={"kid": kid})
        key = self._find_key(self._fetch_jwks(), kid)
        if key is not None:
            return key

        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unknown token key id")

    def verify(self, token: str) -> Principal:
        required = ["exp", "iss", "sub"]
        if self.audience:
            required.append("aud")
        try:
            signing_key = self._get_signing_key(token)
            claims = jwt.decode(
                token,
                key=signing_key,
                algorithms=list(self.algorithms),
                audience=self.audience,
                issuer=self.issuer,
                leeway=self.clock_skew_seconds,
                options={"require": required, "verify_aud": bool(self.audience)},
            )
        except HTTPException:
            raise
        except httpx.HTTPError as exc:
            logger.exception("auth.jwks.fetch.error")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="unable to fetch jwks",
            ) from exc
        except InvalidTokenError as exc:
            logger.warning("auth.token.invalid", extra={"error": exc.__class__.__name__})
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token"
            ) from exc

        subject = str(claims.get("sub") or "").strip()
        if not subject:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token subject")

        principal = Principal(user_id=subject, role=role_from_claims(claims), claims=claims)
        logger.debug("auth.token.verified", extra={"user_id": subject, "role": principal.role})
        return principal


def build_verifier() -> JWTVerifier:
    issuer = settings.auth_issuer
    jwks_url = settings.auth_jwks_url

    if not jwks_url and issuer:
        jwks_url = f"{issuer.rstrip('/')}/.well-known/jwks.json"

    if not issuer or not jwks_url:
        raise RuntimeError("AUTH_ISSUER (and optionally AUTH_JWKS_URL) must be configured")

    logger.info(
        "auth.verifier.configured",
        extra={
            "issuer": issuer,
            "audience": settings.auth_audience,
            "jwks_url": jwks_url,
            "algorithms": settings.auth_jwt_algorithms,
        },
    )

    return JWTVerifier(
        issuer=issuer,
        audience=settings.auth_audience,
        jwks_url=jwks_url,
        algorithms=tuple(settings.auth_jwt_algorithms),
        jwks_cache_ttl_seconds=settings.auth_jwks_cache_ttl_seconds,
        clock_skew_seconds=settings.auth_clock_skew_seconds,
    )
