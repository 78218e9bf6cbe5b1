"""
Session Guard.

Resolves the authenticated identity behind an access token to its profile
row. Every protected endpoint and WebSocket session goes through
`SessionGuard.resolve_session`; an `AuthenticationError` from it is terminal
for the request and is never retried.
"""

import logging
from typing import Optional

from core.exceptions import AuthenticationError, GatewayError
from core.models import Profile
from providers.gateway import DataGateway

logger = logging.getLogger(__name__)


class SessionGuard:
    """Maps access tokens to profiles"""

    def __init__(self, gateway: DataGateway):
        self.gateway = gateway

    async def resolve_session(self, access_token: Optional[str]) -> Profile:
        identity = await self.gateway.auth.get_current_identity(access_token)
        if identity is None:
            raise AuthenticationError("No authenticated identity")

        try:
            profile = await self.gateway.table("profiles").eq("id", identity.id).first()
        except GatewayError as e:
            logger.error(f"Profile lookup failed for {identity.id}: {e.message}")
            raise AuthenticationError("Profile lookup failed")
        if profile is not None:
            return profile

        # First sign-in after sign-up: create the profile from the identity
        if not identity.username:
            raise AuthenticationError("No profile for this identity")
        try:
            rows = await self.gateway.table("profiles").insert(
                [{"id": identity.id, "username": identity.username, "email": identity.email}]
            )
        except GatewayError as e:
            logger.error(f"Could not create profile for {identity.id}: {e.message}")
            raise AuthenticationError("Could not create a profile for this identity")

        logger.info(f"Created profile {identity.username} for {identity.id}")
        return rows[0]
