"""Load and save the whole store as one remote JSON document."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

import httpx

from .config import Settings
from .crypto import FieldCipher, escape_plaintext, is_encrypted, unescape_plaintext
from .errors import CryptoError, ErrorCategory, MalformedDocumentError, PersistenceError
from .metrics import (
    document_load_ms,
    document_loads_total,
    document_save_failures_total,
    document_save_ms,
    document_saves_total,
)
from .state.codec import dumps, loads, store_from_document, store_to_document
from .state.record import utcnow
from .state.store import Store
from .transport.base import DocumentTransport
from .transport.gist import GistTransport

# Per-user fields holding a string -> string mapping of sensitive values.
_SENSITIVE_MAPS = ("item_notes",)
_SENSITIVE_SCALARS = ("invite_code",)


class DocumentBackend:
    """Persistence adapter between a :class:`Store` and a document transport.

    When a cipher is configured, notes and invite codes (and item statuses if
    ``encrypt_item_statuses`` is set) are encrypted in the serialized copy of
    the store; the caller's store is never modified and stays plaintext.
    Without a cipher, sensitive values that begin with ``enc:`` or ``raw:``
    are written with a ``raw:`` marker so they are never mistaken for
    ciphertext on the next load.

    ``save`` is a blind overwrite of the remote document. Two processes that
    load, mutate and save concurrently silently lose one side's changes.
    """

    def __init__(
        self,
        transport: DocumentTransport,
        cipher: FieldCipher | None = None,
        *,
        encrypt_item_statuses: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.transport = transport
        self.cipher = cipher
        self.encrypt_item_statuses = encrypt_item_statuses
        self._clock = clock
        self.log = logging.getLogger(__name__)

    @property
    def encrypted(self) -> bool:
        return self.cipher is not None

    def _sensitive_maps(self) -> tuple[str, ...]:
        if self.encrypt_item_statuses:
            return _SENSITIVE_MAPS + ("item_statuses",)
        return _SENSITIVE_MAPS

    async def load(self) -> Store:
        with document_load_ms.time():
            content = await self.transport.fetch()
        document_loads_total.inc()
        if content is None:
            self.log.info(
                "document_missing",
                extra={"event_type": "document_missing", "latency_ms": document_load_ms.last_ms},
            )
            return Store(clock=self._clock)

        document = loads(content)
        if not isinstance(document, dict):
            raise MalformedDocumentError("preference document must be a JSON object")
        self._decrypt_document(document)
        store = store_from_document(document, clock=self._clock)
        self.log.info(
            "document_loaded",
            extra={
                "event_type": "document_loaded",
                "count": len(store),
                "latency_ms": document_load_ms.last_ms,
            },
        )
        return store

    async def save(self, store: Store) -> None:
        # store_to_document builds fresh containers, so encrypting the result
        # cannot leak back into the live store.
        document = store_to_document(store)
        self._seal_document(document)
        content = dumps(document)
        try:
            with document_save_ms.time():
                await self.transport.put(content)
        except PersistenceError:
            document_save_failures_total.inc()
            self.log.error(
                "document_save_failed",
                extra={"event_type": "document_save_failed", "error_category": ErrorCategory.STORAGE.value},
            )
            raise
        document_saves_total.inc()
        self.log.info(
            "document_saved",
            extra={
                "event_type": "document_saved",
                "count": len(document),
                "latency_ms": document_save_ms.last_ms,
            },
        )

    # Field transforms ------------------------------------------------------

    def _seal_value(self, value: str) -> str:
        if self.cipher is None:
            return escape_plaintext(value)
        return self.cipher.encrypt(value)

    def _seal_document(self, document: dict[str, Any]) -> None:
        for user in document.values():
            for name in self._sensitive_maps():
                if user.get(name):
                    user[name] = {k: self._seal_value(v) for k, v in user[name].items()}
            for name in _SENSITIVE_SCALARS:
                if user.get(name):
                    user[name] = self._seal_value(user[name])

    def _decrypt_value(self, value: Any) -> Any:
        if not isinstance(value, str):
            return value
        if not is_encrypted(value):
            # Plaintext, possibly written before encryption was enabled.
            return unescape_plaintext(value)
        if self.cipher is None:
            raise CryptoError("document holds encrypted fields but no encryption key is configured")
        return self.cipher.decrypt(value)

    def _decrypt_document(self, document: dict[str, Any]) -> None:
        try:
            for user in document.values():
                if not isinstance(user, dict):
                    continue
                for name in _SENSITIVE_MAPS + ("item_statuses",):
                    values = user.get(name)
                    if isinstance(values, dict) and values:
                        user[name] = {k: self._decrypt_value(v) for k, v in values.items()}
                for name in _SENSITIVE_SCALARS:
                    if name in user:
                        user[name] = self._decrypt_value(user[name])
        except CryptoError:
            self.log.error(
                "document_decrypt_failed",
                extra={"event_type": "document_decrypt_failed", "error_category": ErrorCategory.CRYPTO.value},
            )
            raise


def build_backend(settings: Settings, *, client: httpx.AsyncClient | None = None) -> DocumentBackend:
    """Create the gist-backed document backend described by ``settings``."""

    transport = GistTransport(
        settings.gist_id,
        settings.github_token.get_secret_value(),
        filename=settings.gist_filename,
        api_url=settings.gist_api_url,
        timeout_s=settings.request_timeout_s,
        client=client,
    )
    cipher = None
    if settings.encryption_enabled:
        cipher = FieldCipher.from_passphrase(settings.encryption_key.get_secret_value())
    return DocumentBackend(
        transport, cipher, encrypt_item_statuses=settings.encrypt_item_statuses
    )
