"""
Resolves buyer and scanning-staff identities from the profiles table.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError

from backend_client import BackendClient, BackendError, in_filter, iter_batches
from metrics import metrics
from models import Identity, Profile

logger = logging.getLogger(__name__)


class ProfileDirectory:
    """Resolved profiles with placeholder fallback for unknown ids."""

    def __init__(self, profiles: Optional[Dict[str, Profile]] = None, failed_batches: int = 0):
        self.profiles = profiles or {}
        self.failed_batches = failed_batches

    def identity(self, user_id: Optional[str]) -> Identity:
        profile = self.profiles.get(user_id) if user_id else None
        if profile is None:
            return Identity()
        return Identity(name=profile.display_name, email=profile.email or Identity().email)

    def scanner_identity(self, scanner_id: Optional[str]) -> Optional[Identity]:
        """None when the code was never scanned."""
        if not scanner_id:
            return None
        return self.identity(scanner_id)

    def __len__(self) -> int:
        return len(self.profiles)


class ProfileResolver:
    """Batched profile lookups."""

    def __init__(self, client: BackendClient, batch_size: int = 100) -> None:
        self.client = client
        self.batch_size = batch_size

    def resolve(self, user_ids: Iterable[Optional[str]]) -> ProfileDirectory:
        ids: List[str] = list(dict.fromkeys(uid for uid in user_ids if uid))
        directory = ProfileDirectory()

        for batch in iter_batches(ids, self.batch_size):
            try:
                rows = self.client.select(
                    "profiles", "id,name,lastName,email", {"id": in_filter(batch)}
                )
            except BackendError as exc:
                logger.error("Failed to read profile batch: %s", exc)
                directory.failed_batches += 1
                metrics.record_degraded_fetch("profiles")
                continue

            for row in rows:
                try:
                    profile = Profile(**row)
                except ValidationError as exc:
                    logger.warning(f"Skipping invalid profile record: {exc}")
                    continue
                directory.profiles[profile.id] = profile

        logger.info("Resolved %d of %d profiles", len(directory), len(ids))
        return directory
