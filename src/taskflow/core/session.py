# src/taskflow/core/session.py

from __future__ import annotations

"""
Session lifecycle.

Auth state changes drive the task list:
- signed-in  -> resolve the profile, bind the store to the user, full fetch,
                start the realtime reconciler
- signed-out -> stop the reconciler, clear the store
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any
from urllib.parse import quote

from ..gateway.auth import AuthEvent, AuthSession
from ..tasks.task_controller import TaskController
from ..tasks.task_reconciler import RealtimeReconciler
from .errors import NotAuthenticated, RemoteError, TaskFlowError, ValidationError
from .ports import ProfileGateway

logger = logging.getLogger(__name__)

AVATAR_URL = "https://api.dicebear.com/7.x/avataaars/svg?seed={seed}"
DEFAULT_NAME = "User"

# console key -> column; `users` row and `profile` details row respectively
USER_FIELDS = {"name": "full_name", "email": "email"}
DETAIL_FIELDS = {"phone": "phone_number", "bio": "bio", "location": "location", "website": "website"}


@dataclass(slots=True, frozen=True)
class UserProfile:
    id: str
    name: str
    email: str
    avatar: str


def avatar_url(email: str) -> str:
    return AVATAR_URL.format(seed=quote(email or "", safe="@."))


def fallback_name(auth_user: Mapping[str, Any]) -> str:
    """Name from auth metadata, else the email local part, else "User"."""
    meta = auth_user.get("user_metadata") or {}
    full_name = str(meta.get("full_name") or "").strip() if isinstance(meta, Mapping) else ""
    if full_name:
        return full_name
    email = str(auth_user.get("email") or "")
    local = email.split("@")[0].strip()
    return local or DEFAULT_NAME


async def load_user_profile(profiles: ProfileGateway | None, auth_user: Mapping[str, Any]) -> UserProfile:
    """
    Build the display profile for an auth user.

    Reads the denormalized profile row and creates it when missing. Profile
    failures are logged; the derived name/email are used instead.
    """
    user_id = str(auth_user.get("id") or "")
    email = str(auth_user.get("email") or "")
    derived = fallback_name(auth_user)

    row: Mapping[str, Any] | None = None
    if profiles is not None:
        try:
            row = await profiles.get_profile(user_id)
        except RemoteError as e:
            logger.warning("Profile lookup failed user=%s: %s", user_id, e)
        else:
            if row is None:
                try:
                    await profiles.create_profile({"id": user_id, "full_name": derived, "email": email})
                    logger.info("Profile row created user=%s", user_id)
                except RemoteError as e:
                    logger.warning("Failed to create profile row user=%s: %s", user_id, e)

    name = str((row or {}).get("full_name") or "").strip() or derived
    return UserProfile(
        id=user_id,
        name=name,
        email=str((row or {}).get("email") or "") or email,
        avatar=avatar_url(email),
    )


def split_profile_changes(changes: Mapping[str, str]) -> tuple[dict[str, str], dict[str, str]]:
    """
    Validate /profile edits and split them into (users fields, details fields).

    Values are trimmed; details may be cleared with an empty value, name/email may not.
    """
    user_fields: dict[str, str] = {}
    detail_fields: dict[str, str] = {}
    for key, raw in changes.items():
        value = str(raw).strip()
        if key in USER_FIELDS:
            if not value:
                raise ValidationError(f"Profile {key} cannot be empty")
            if key == "email" and "@" not in value:
                raise ValidationError("A valid email address is required")
            user_fields[USER_FIELDS[key]] = value
        elif key in DETAIL_FIELDS:
            detail_fields[DETAIL_FIELDS[key]] = value
        else:
            allowed = ", ".join([*USER_FIELDS, *DETAIL_FIELDS])
            raise ValidationError(f"Unknown profile field '{key}' (expected one of: {allowed})")
    return user_fields, detail_fields


class SessionManager:
    def __init__(
        self,
        controller: TaskController,
        *,
        reconciler: RealtimeReconciler | None = None,
        profiles: ProfileGateway | None = None,
    ) -> None:
        self._controller = controller
        self._reconciler = reconciler
        self._profiles = profiles
        self.user: UserProfile | None = None

    @property
    def authenticated(self) -> bool:
        return self.user is not None

    async def on_auth_event(self, event: AuthEvent, session: AuthSession | None) -> None:
        """Listener for SupabaseAuth.on_auth_state_change."""
        if event == AuthEvent.SIGNED_IN and session is not None:
            await self.activate(session.user)
        elif event == AuthEvent.SIGNED_OUT:
            await self.deactivate()

    async def activate(self, auth_user: Mapping[str, Any]) -> UserProfile:
        profile = await load_user_profile(self._profiles, auth_user)
        if self.user is not None and self.user.id != profile.id:
            await self.deactivate()

        store = self._controller.store
        store.set_owner(profile.id)
        self.user = profile
        logger.info("Session active user=%s name=%r", profile.id, profile.name)

        try:
            await self._controller.refresh()
        except TaskFlowError as e:
            logger.warning("Initial task fetch failed user=%s: %s", profile.id, e)

        if self._reconciler is not None:
            try:
                await self._reconciler.start(profile.id)
            except TaskFlowError as e:
                logger.warning("Realtime subscription failed user=%s: %s", profile.id, e)
        return profile

    async def deactivate(self) -> None:
        if self._reconciler is not None:
            await self._reconciler.stop()
        store = self._controller.store
        store.clear()
        store.set_owner(None)
        if self.user is not None:
            logger.info("Session ended user=%s", self.user.id)
        self.user = None

    # ---- profile editing ----

    def _require_profiles(self) -> tuple[UserProfile, ProfileGateway]:
        if self.user is None:
            raise NotAuthenticated()
        if self._profiles is None:
            raise RemoteError("Profile storage is not available.")
        return self.user, self._profiles

    async def load_details(self) -> dict[str, str]:
        """Contact details keyed like the /profile fields (phone, bio, location, website)."""
        user, profiles = self._require_profiles()
        row = await profiles.get_details(user.id) or {}
        return {key: str(row.get(column) or "") for key, column in DETAIL_FIELDS.items()}

    async def update_profile(self, changes: Mapping[str, str]) -> UserProfile:
        user, profiles = self._require_profiles()
        user_fields, detail_fields = split_profile_changes(changes)
        if not user_fields and not detail_fields:
            raise ValidationError("Nothing to update")

        now = datetime.now(UTC).isoformat()
        if user_fields:
            await profiles.update_profile(user.id, {**user_fields, "updated_at": now})
        if detail_fields:
            await profiles.save_details(user.id, {**detail_fields, "updated_at": now})

        self.user = replace(
            user,
            name=user_fields.get("full_name", user.name),
            email=user_fields.get("email", user.email),
        )
        logger.info("Profile updated user=%s fields=%s", user.id, sorted({**user_fields, **detail_fields}))
        return self.user
