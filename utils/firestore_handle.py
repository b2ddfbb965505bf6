"""Lazily-initialized Firestore client shared by the feed cycle services.

The provider is created once by the process entry point (Cloud Run app,
report script) and handed to whatever needs database access.  The client is
constructed on the first ``get_database_handle()`` call using Application
Default Credentials and then reused for the lifetime of the process.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

from utils.settings import get_setting

ClientFactory = Callable[[Optional[str]], Any]


class InitializationError(RuntimeError):
    """Raised when the Firestore client cannot be constructed."""


def _default_factory(project: Optional[str]):
    from google.cloud import firestore  # type: ignore

    if project:
        return firestore.Client(project=project)
    return firestore.Client()


def _resolve_project() -> Optional[str]:
    return get_setting("firestore_project") or get_setting("gcp_project_id")


class FirestoreHandleProvider:
    """Process-wide cell holding at most one Firestore client."""

    def __init__(
        self,
        factory: Optional[ClientFactory] = None,
        project: Optional[str] = None,
    ) -> None:
        self._factory = factory or _default_factory
        self._project = project
        self._lock = threading.Lock()
        self._handle: Any = None

    def get_database_handle(self):
        handle = self._handle
        if handle is not None:
            return handle
        with self._lock:
            if self._handle is None:
                self._handle = self._create()
            return self._handle

    def _create(self):
        project = self._project or _resolve_project()
        try:
            handle = self._factory(project)
        except Exception as exc:  # noqa: BLE001
            raise InitializationError(f"Firestore client init failed: {exc}") from exc
        if handle is None:
            raise InitializationError("Firestore client factory returned no client")
        logging.info("[FS] client initialized (project=%s)", project or "<default>")
        return handle


def get_database_handle(provider: FirestoreHandleProvider):
    return provider.get_database_handle()
