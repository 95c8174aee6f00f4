import json
import logging
import time
from typing import Dict, List, Optional
import urllib.request

from fastapi import Depends, Header, HTTPException, status, Request
from jose import jwt
from jose.exceptions import JWTError

import os
from dotenv import load_dotenv

from config import SELLER_GROUPS
from services.quotation_state import Actor, Role

load_dotenv()

logger = logging.getLogger("auth")

# === Cognito Configuration ===
COGNITO_REGION = os.getenv("COGNITO_REGION", "eu-north-1")
COGNITO_USER_POOL_ID = os.getenv("COGNITO_USER_POOL_ID")
COGNITO_APP_CLIENT_ID = os.getenv("COGNITO_APP_CLIENT_ID")

# These are constructed from the settings above.
COGNITO_ISSUER = f"https://cognito-idp.{COGNITO_REGION}.amazonaws.com/{COGNITO_USER_POOL_ID}"
COGNITO_JWKS_URL = f"{COGNITO_ISSUER}/.well-known/jwks.json"

JWKS_CACHE_SECONDS = 60 * 60 * 24

# Cache for Cognito's public keys (JWKS)
jwks_cache = {
    "keys": [],
    "expiration_time": 0,
}


def get_jwks():
    """
    Retrieves the JSON Web Key Set (JWKS) from Cognito.
    Caches the keys for a day so they are not fetched on every request.
    """
    global jwks_cache
    if jwks_cache["keys"] and jwks_cache["expiration_time"] > time.time():
        return jwks_cache["keys"]

    logger.info(f"Fetching JWKS from: {COGNITO_JWKS_URL}")
    try:
        with urllib.request.urlopen(COGNITO_JWKS_URL) as response:
            jwks_data = json.loads(response.read().decode("utf-8"))
    except (OSError, ValueError) as e:
        logger.error(f"Error fetching JWKS: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not fetch Cognito public keys for token validation."
        )

    jwks_cache = {
        "keys": jwks_data["keys"],
        "expiration_time": time.time() + JWKS_CACHE_SECONDS
    }
    return jwks_cache["keys"]


def _bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None

    # The token is expected to be in the format "Bearer <token>"
    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format",
        )
    return parts[1]


def decode_token(token: str) -> Dict[str, any]:
    """Validate a Cognito JWT and return its claims."""
    jwks = get_jwks()

    # Find the right key to use for decoding
    try:
        unverified_header = jwt.get_unverified_header(token)
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token header"
        )

    rsa_key = {}
    for key in jwks:
        if key["kid"] == unverified_header.get("kid"):
            rsa_key = {
                "kty": key["kty"],
                "kid": key["kid"],
                "use": key["use"],
                "n": key["n"],
                "e": key["e"],
            }
            break

    if not rsa_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unable to find a matching public key to verify the token",
        )

    try:
        return jwt.decode(
            token,
            rsa_key,
            algorithms=["RS256"],
            audience=COGNITO_APP_CLIENT_ID,
            issuer=COGNITO_ISSUER,
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired"
        )
    except jwt.JWTClaimsError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token claims: {e}"
        )
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Token validation failed: {e}"
        )


def get_current_user(request: Request) -> Dict[str, any]:
    """
    FastAPI dependency to validate the Cognito JWT from the Authorization header.

    Usage:
        @router.get("/secure-data", dependencies=[Depends(get_current_user)])
    """
    token = _bearer_token(request)
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header is missing",
        )
    return decode_token(token)


def get_optional_user(request: Request) -> Optional[Dict[str, any]]:
    """Like get_current_user, but a request without a token is anonymous (None)."""
    token = _bearer_token(request)
    if token is None:
        return None
    return decode_token(token)


def get_user_identifier(user: Optional[Dict[str, any]]) -> Optional[str]:
    if not user:
        return None
    return user.get("sub") or user.get("cognito:username") or user.get("username") or user.get("email")


def get_user_groups(user: Optional[Dict[str, any]]) -> List[str]:
    if not user:
        return []
    return list(user.get("cognito:groups") or [])


def actor_from_claims(user: Optional[Dict[str, any]], quotation_token: Optional[str] = None) -> Actor:
    """Map token claims to the role the quotation engine checks against."""
    if user is None:
        return Actor.anonymous(access_token=quotation_token)
    groups = set(get_user_groups(user))
    role = Role.SELLER if groups.intersection(SELLER_GROUPS) else Role.CUSTOMER
    return Actor(role=role, user_id=get_user_identifier(user))


def get_actor(
    user: Optional[Dict[str, any]] = Depends(get_optional_user),
    x_quotation_token: Optional[str] = Header(None),
) -> Actor:
    """
    FastAPI dependency resolving the caller to an Actor.

    Anonymous buyers prove ownership of a quotation with the X-Quotation-Token
    header returned when they created it.
    """
    return actor_from_claims(user, quotation_token=x_quotation_token)


def require_group(groups: List[str]):
    """Dependency factory: the caller must belong to at least one of `groups`."""
    def checker(user: Dict[str, any] = Depends(get_current_user)) -> Dict[str, any]:
        if not set(get_user_groups(user)).intersection(groups):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires membership in one of: {', '.join(groups)}"
            )
        return user
    return checker


def require_seller(actor: Actor = Depends(get_actor)) -> Actor:
    if not actor.is_seller:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Seller role required")
    return actor
