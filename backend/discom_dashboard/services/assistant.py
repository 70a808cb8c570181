"""Keeps the conversational assistant's server session alive across reloads."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from loguru import logger

from discom_dashboard.core.errors import NetworkFailure, NotFound
from discom_dashboard.core.store import SessionStore
from discom_dashboard.services.api_client import DashboardApiClient

STORE_KEY = "assistant_session_id"


class AssistantSessionKeeper:
    def __init__(self, client: DashboardApiClient, store: SessionStore, *, user_id: str):
        self._client = client
        self._store = store
        self._user_id = user_id
        self.session_id: Optional[str] = None
        self.history: List[Dict[str, Any]] = []

    async def ensure(self) -> Optional[str]:
        """Restore the stored assistant session, re-creating it if upstream lost it."""
        stored = await self._store.get(STORE_KEY)
        if stored:
            try:
                payload = await self._client.get_session_history(stored)
            except NotFound:
                logger.bind(assistant_session=stored).info("assistant_session_expired")
            except NetworkFailure as exc:
                # Keep the id; the assistant may just be unreachable right now.
                logger.bind(assistant_session=stored, error=exc.message).warning(
                    "assistant_history_failed"
                )
                self.session_id = stored
                return stored
            else:
                messages = payload.get("messages")
                self.history = messages if isinstance(messages, list) else []
                self.session_id = stored
                return stored

        try:
            created = await self._client.create_session(self._user_id)
        except NetworkFailure as exc:
            logger.bind(error=exc.message).warning("assistant_session_create_failed")
            self.session_id = None
            return None

        await self._store.set(STORE_KEY, created)
        self.session_id = created
        self.history = []
        logger.bind(assistant_session=created).info("assistant_session_created")
        return created
