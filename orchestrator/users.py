"""
User Store - Users indexed by id and by identity provider account
"""

import logging
from typing import Optional, Protocol

from shared.kv_store import KeyValueStore
from shared.schemas import IdentityProfile, User, utc_now

logger = logging.getLogger(__name__)


class IdentityProvider(Protocol):
    """Exchanges an OAuth authorization code for the account's profile"""

    def exchange(self, provider: str, code: str) -> IdentityProfile: ...


class UserStore:
    """
    Persists users twice: "user:{id}" holds the record and
    "user_idx:{provider}:{providerId}" maps a provider account to the id.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    def save(self, user: User) -> None:
        self.store.put(f"user:{user.id}", user.to_json())
        self.store.put(self._index_key(user.provider, user.provider_id), user.id)

    def get(self, user_id: str) -> Optional[User]:
        raw = self.store.get(f"user:{user_id}")
        return User.from_json(raw) if raw else None

    def get_by_provider(self, provider: str, provider_id: str) -> Optional[User]:
        user_id = self.store.get(self._index_key(provider, provider_id))
        if not user_id:
            return None
        return self.get(user_id)

    def upsert_login(self, provider: str, profile: IdentityProfile) -> User:
        """
        Record a successful login.

        Creates the user on first login; afterwards only last_login (and the
        avatar, when the provider sends one) are refreshed.

        Args:
            provider: Identity provider name (e.g. "github")
            profile: Profile returned by the provider

        Returns:
            The stored user
        """
        user = self.get_by_provider(provider, profile.provider_id)
        if user is None:
            user = User(
                email=profile.email,
                name=profile.name,
                avatar_url=profile.avatar_url,
                provider=provider,
                provider_id=profile.provider_id,
            )
            logger.info(f"[USERS] Created user {user.id} for {provider} account {profile.provider_id}")
        else:
            user.last_login = utc_now()
            if profile.avatar_url:
                user.avatar_url = profile.avatar_url

        self.save(user)
        return user

    @staticmethod
    def _index_key(provider: str, provider_id: str) -> str:
        return f"user_idx:{provider}:{provider_id}"
