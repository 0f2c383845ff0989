from __future__ import annotations

from typing import Protocol


class DocumentTransport(Protocol):
    """Remote storage holding the preference document as one text blob."""

    async def fetch(self) -> str | None:  # noqa: D401
        """Return the stored document, or ``None`` if none has been written yet."""

    async def put(self, content: str) -> None:  # noqa: D401
        """Replace the stored document with ``content``."""
