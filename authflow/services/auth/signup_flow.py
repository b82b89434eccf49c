"""
Signup flow adapter.

Binds the signup state machine to concrete dependencies and exposes
UI-facing handlers, step titles and descriptions.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog

from authflow.core.exceptions import ValidationError
from authflow.domain.schemas import ProfileData
from authflow.state_machines.signup_flow import SignupDependencies, SignupStateMachine, SignupStep
from authflow.utils.auth_validation import validate_email, validate_password

from .base import FlowAdapter
from .results import raise_for_result

logger = structlog.get_logger(__name__)

BACKUP_LINKED_NOTICE = "Your email backup has been set up and linked to your account."
BACKUP_UNLINKED_NOTICE = (
    "Your email account was created, but we couldn't link it automatically. "
    "You can link it later in settings."
)


@dataclass(frozen=True)
class BackupOutcome:
    linked: bool
    title: str
    message: str


class SignupFlow(FlowAdapter):
    def __init__(self, dependencies: SignupDependencies, flow_id: Optional[str] = None):
        self.machine = SignupStateMachine(dependencies, flow_id=flow_id)

    # Handlers
    async def handle_user_type_selection(self, is_artist: bool) -> None:
        result = await self.machine.set_user_type(is_artist)
        raise_for_result(result, "set_user_type", "Failed to set user type")

    async def handle_artist_type_selection(self, is_solo: bool) -> None:
        result = await self.machine.set_artist_type(is_solo)
        raise_for_result(result, "set_artist_type", "Failed to set artist type")

    async def handle_profile_completion(self, profile_data: ProfileData | Dict[str, Any]) -> None:
        result = await self.machine.complete_profile(profile_data)
        raise_for_result(result, "complete_profile", "Failed to complete profile")

    async def handle_firebase_account_creation(self, email: str, password: Optional[str] = None) -> BackupOutcome:
        """Create the email backup account; a failed link is reported, not raised."""
        email = (email or "").strip()
        is_valid, error = validate_email(email)
        if not is_valid:
            raise ValidationError(error, details={"field": "email"})
        if password is not None:
            is_valid, error = validate_password(password)
            if not is_valid:
                raise ValidationError(error, details={"field": "password"})

        result = await self.machine.create_firebase_account(email, password)
        raise_for_result(result, "create_firebase_account", "Failed to create Firebase account")

        if result.data["linked"]:
            return BackupOutcome(linked=True, title="Success!", message=BACKUP_LINKED_NOTICE)
        return BackupOutcome(linked=False, title="Account Created", message=BACKUP_UNLINKED_NOTICE)

    def handle_firebase_backup_skip(self) -> None:
        self.machine.skip_firebase_backup()

    async def handle_signup_completion(self) -> None:
        result = await self.machine.complete_login()
        raise_for_result(result, "complete_login", "Failed to complete signup")

    # UI helpers
    def get_step_title(self) -> str:
        state = self.machine.state
        titles = {
            SignupStep.USER_TYPE: "Sign Up",
            SignupStep.ARTIST_TYPE: "Artist Type",
            SignupStep.PROFILE_SETUP: "Create Artist Profile" if state.is_artist else "Create Profile",
            SignupStep.FIREBASE_BACKUP: "Create Email Account",
            SignupStep.COMPLETE: "Welcome!",
        }
        return titles.get(state.step, "")

    def get_step_description(self) -> str:
        state = self.machine.state
        if state.step == SignupStep.PROFILE_SETUP and state.is_artist:
            if state.is_solo_artist:
                return "This is your public solo artist profile that will be visible to others."
            return (
                "This is your public band/group profile that will be visible to others. "
                "You'll be able to make individual member profiles later."
            )

        descriptions = {
            SignupStep.USER_TYPE: (
                "Select whether you want to sign up as an artist or a listener. "
                "This helps us tailor your experience."
            ),
            SignupStep.ARTIST_TYPE: "Are you a solo artist or part of a band/group?",
            SignupStep.PROFILE_SETUP: "Set up your public profile",
            SignupStep.FIREBASE_BACKUP: (
                "Create an email account to backup your Nostr identity and access additional features"
            ),
            SignupStep.COMPLETE: "You're all set up!",
        }
        return descriptions.get(state.step, "")

    def should_show_firebase_backup(self) -> bool:
        return self.machine.state.is_artist
