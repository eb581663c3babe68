from __future__ import annotations

import logging
import sqlite3
from typing import Any, Mapping

from tabulator.errors import MalformedRecord, ProfileResolutionFailure, ValidationFailure
from tabulator.models import User, UserRole

logger = logging.getLogger(__name__)


def fallback_profile(claims: Mapping[str, Any]) -> User:
    user_id = claims.get("sub") or claims.get("id")
    email = claims.get("email") or None
    name = (claims.get("name") or "").strip()
    if not name and email:
        name = email.split("@", 1)[0]
    try:
        role = UserRole(claims.get("role") or UserRole.JUDGE)
    except ValueError:
        role = UserRole.JUDGE
    return User(
        id=user_id,
        name=name or "Judge",
        role=role,
        assigned_event_id=claims.get("assigned_event_id"),
        email=email,
        is_fallback=True,
    )


def resolve_profile(store, claims: Mapping[str, Any]) -> User:
    """
    Profile for the authenticated subject in ``claims``.

    Returns the stored profile when it can be read, otherwise a fallback
    built from the claims.
    """
    user_id = claims.get("sub") or claims.get("id")
    if not user_id:
        raise ProfileResolutionFailure("Authentication claims carry no subject id.")

    try:
        profile = store.get_profile(user_id)
    except (sqlite3.Error, MalformedRecord) as e:
        logger.warning(f"Profile lookup failed for {user_id}, using fallback identity: {e}")
        return fallback_profile(claims)

    if profile is None:
        logger.warning(f"No profile stored for {user_id}, using fallback identity")
        return fallback_profile(claims)
    return profile


def persist_profile(store, user: User, confirm_fallback: bool = False) -> User:
    if user.is_fallback and not confirm_fallback:
        raise ValidationFailure(
            f"Refusing to store fallback identity for {user.id} without confirmation."
        )
    stored = user.model_copy(update={"is_fallback": False})
    return store.upsert_profile(stored)
