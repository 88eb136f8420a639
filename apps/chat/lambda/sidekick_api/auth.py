"""Firebase ID-token verification for API routes."""

import logging
from dataclasses import dataclass
from typing import Any

from firebase_admin import auth as firebase_auth
from firebase_admin import exceptions as firebase_exceptions

from .errors import InternalError, Unauthenticated

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AuthContext:
    uid: str
    decoded_token: dict[str, Any]


def extract_bearer_token(authorization: str | None) -> str:
    header = (authorization or "").strip()
    if not header:
        raise Unauthenticated("User must be authenticated")
    parts = header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise Unauthenticated("Authorization header must be of the form 'Bearer <token>'")
    return parts[1].strip()


def verify_id_token(token: str) -> AuthContext:
    try:
        decoded = firebase_auth.verify_id_token(token)
    except firebase_auth.ExpiredIdTokenError:
        raise Unauthenticated("Authentication token has expired") from None
    except firebase_auth.RevokedIdTokenError:
        raise Unauthenticated("Authentication token has been revoked") from None
    except (firebase_auth.InvalidIdTokenError, firebase_exceptions.InvalidArgumentError, ValueError):
        raise Unauthenticated("Authentication token is malformed") from None
    except firebase_exceptions.FirebaseError as exc:
        logger.exception("Firebase token verification failed")
        raise InternalError("Authentication service unavailable") from exc

    uid = decoded.get("uid")
    if not isinstance(uid, str) or not uid:
        raise Unauthenticated("Authentication token missing uid claim")
    return AuthContext(uid=uid, decoded_token=decoded)
