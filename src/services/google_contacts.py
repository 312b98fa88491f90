"""Google People API adapter for name → email lookups."""

from __future__ import annotations

import logging
from typing import Any

from src.config import GOOGLE_PEOPLE_BASE_URL
from src.models import AccountRef
from src.ports import ContactsPort
from src.services.cache import TTLCache
from src.services.http import RetryingHTTPClient

logger = logging.getLogger(__name__)


class GoogleContactsClient(RetryingHTTPClient, ContactsPort):
    service = "google_people"

    def __init__(self, base_url: str | None = None, *, cache: TTLCache | None = None, **kwargs: Any):
        super().__init__(base_url or GOOGLE_PEOPLE_BASE_URL, **kwargs)
        self._cache = cache if cache is not None else TTLCache()

    def find_email_by_name(self, account: AccountRef, name: str) -> str | None:
        """Return the primary email of the best match for *name*, or ``None``.

        A contact whose display name matches exactly (case-insensitive) wins
        over the first search hit.  Misses are cached too.
        """
        key = f"{account.id}:{name.strip().lower()}"
        if self._cache.has(key):
            return self._cache.get(key)

        data = self._request(
            "GET",
            "/people:searchContacts",
            params={"query": name.strip(), "readMask": "names,emailAddresses", "pageSize": 10},
            headers={"Authorization": f"Bearer {account.credential_handle}"},
        )
        email = self._pick(data.get("results", []), name)
        logger.info("Contact lookup for %r on %s: %s", name, account.id, "found" if email else "no match")
        self._cache.put(key, email)
        return email

    @staticmethod
    def _pick(results: list[dict[str, Any]], name: str) -> str | None:
        wanted = name.strip().lower()
        fallback: str | None = None
        for result in results:
            person = result.get("person", {})
            emails = [e["value"] for e in person.get("emailAddresses", []) if e.get("value")]
            if not emails:
                continue
            names = [n.get("displayName", "").lower() for n in person.get("names", [])]
            if wanted in names:
                return emails[0]
            if fallback is None:
                fallback = emails[0]
        return fallback
