"""Client for the external Transaction Directory.

The directory resolves a transaction to its listing and two parties, and owns
a mutable metadata bag per transaction. Listings carry the mirrored NDA
reference in ``privateData``.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

import httpx

from .config import DIRECTORY_API_URL, DIRECTORY_API_TOKEN, HTTP_TIMEOUT_SECONDS
from .errors import ExternalProviderError, NotFound, VersionConflict
from .utils import json_body, send_with_retries

logger = logging.getLogger(__name__)


@dataclass
class Party:
    id: str
    email: Optional[str] = None
    name: Optional[str] = None


@dataclass
class Transaction:
    id: str
    listing_id: Optional[str]
    listing_title: Optional[str]
    provider: Party
    customer: Party
    metadata: dict = field(default_factory=dict)
    metadata_version: int = 0


@dataclass
class Listing:
    id: str
    title: Optional[str] = None
    author_id: Optional[str] = None
    private_data: dict = field(default_factory=dict)
    public_data: dict = field(default_factory=dict)


def _party(data: Optional[dict]) -> Party:
    data = data or {}
    return Party(id=data.get("id"), email=data.get("email"), name=data.get("displayName"))


class TransactionDirectory:
    def __init__(self, base_url: str = DIRECTORY_API_URL, token: Optional[str] = DIRECTORY_API_TOKEN,
                 timeout: float = HTTP_TIMEOUT_SECONDS, transport: Optional[httpx.BaseTransport] = None):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(base_url=base_url, headers=headers, timeout=timeout, transport=transport)

    def close(self):
        self._client.close()

    def _call(self, method: str, path: str, **kwargs) -> dict:
        resp = send_with_retries(self._client, method, path, label="Transaction directory", **kwargs)
        if resp.status_code == 404:
            raise NotFound(f"{path} not found in transaction directory.")
        if resp.status_code in (409, 412):
            raise VersionConflict(path)
        if resp.status_code >= 400:
            logger.error("directory %s %s rejected: %s %s", method, path, resp.status_code, resp.text[:500])
            raise ExternalProviderError("Transaction directory rejected the request.")
        return json_body(resp, "Transaction directory")

    def get_transaction(self, transaction_id: str) -> Transaction:
        data = self._call("GET", f"/transactions/{transaction_id}")
        listing = data.get("listing") or {}
        return Transaction(
            id=data.get("id") or transaction_id,
            listing_id=listing.get("id"),
            listing_title=listing.get("title"),
            provider=_party(data.get("provider")),
            customer=_party(data.get("customer")),
            metadata=data.get("metadata") or {},
            metadata_version=data.get("metadataVersion") or 0,
        )

    def read_metadata(self, transaction_id: str):
        tx = self.get_transaction(transaction_id)
        return tx.metadata, tx.metadata_version

    def write_metadata(self, transaction_id: str, metadata: dict, expected_version: int) -> int:
        data = self._call(
            "PUT",
            f"/transactions/{transaction_id}/metadata",
            json={"metadata": metadata},
            headers={"If-Match": str(expected_version)},
        )
        return data.get("metadataVersion", expected_version + 1)

    def get_listing(self, listing_id: str) -> Listing:
        data = self._call("GET", f"/listings/{listing_id}")
        return Listing(
            id=data.get("id") or listing_id,
            title=data.get("title"),
            author_id=data.get("authorId"),
            private_data=data.get("privateData") or {},
            public_data=data.get("publicData") or {},
        )

    def update_listing(self, listing_id: str, private_data: Optional[dict] = None, public_data: Optional[dict] = None):
        body = {}
        if private_data is not None:
            body["privateData"] = private_data
        if public_data is not None:
            body["publicData"] = public_data
        self._call("PATCH", f"/listings/{listing_id}", json=body)
