"""Pseudonymous installation identity and device descriptor."""

from __future__ import annotations

import json
import logging
import platform
from dataclasses import dataclass
from typing import Protocol
from uuid import uuid4

logger = logging.getLogger(__name__)

INSTALLATION_ID_KEY = "installation_user_id"


class MetadataStore(Protocol):
    def get_metadata(self, key: str) -> str | None: ...

    def set_metadata_if_absent(self, key: str, value: str) -> str: ...


@dataclass(frozen=True, slots=True)
class InstallationIdentity:
    """Random per-installation user id, never derived from personal data."""

    user_id: str

    @classmethod
    def load_or_create(cls, store: MetadataStore) -> InstallationIdentity:
        existing = store.get_metadata(INSTALLATION_ID_KEY)
        if existing:
            return cls(user_id=existing)
        user_id = store.set_metadata_if_absent(INSTALLATION_ID_KEY, str(uuid4()))
        logger.info("Generated installation identity")
        return cls(user_id=user_id)


def describe_device() -> str:
    """JSON-encoded coarse device descriptor."""

    return json.dumps(
        {
            "platform": platform.system() or "unknown",
            "os_version": platform.release() or "unknown",
            "machine": platform.machine() or "unknown",
            "python_version": platform.python_version(),
        },
        sort_keys=True,
    )
