"""Persistent store for credentials obtained by the web login flow.

Credentials live in ``~/.local/share/orgauth/credentials/<username>.json``
(XDG) or the platform-equivalent directory. Files are written atomically
via :func:`~orgauth.config.atomic_write` with ``0o600`` permissions so that
tokens are never world-readable, even momentarily.

See Also:
    :class:`~orgauth.auth.identity.TokenExchanger` -- produces
    :class:`Credential` instances.
"""

from __future__ import annotations

import json
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Optional
from urllib.parse import quote

from pydantic import BaseModel, Field

from orgauth.config import atomic_write, get_data_dir

_SAFE_NAME = re.compile(r"[^A-Za-z0-9@._+-]")


class Credential(BaseModel):
    """Tokens and identity returned by a successful authorization code exchange.

    Attributes:
        access_token: Session token sent as ``Authorization: Bearer``.
        refresh_token: Long-lived token, present when the ``refresh_token``
            scope was granted.
        instance_url: Base URL of the org the user logged into.
        id_url: Identity service URL (``.../id/<org_id>/<user_id>``).
        username: Login name, when the identity service reported one.
        login_url: Login host the flow was started against.
        client_id: Connected app that performed the exchange.
        issued_at: When the provider issued the access token.
    """

    access_token: str
    instance_url: str
    refresh_token: Optional[str] = None
    id_url: Optional[str] = Field(default=None, description="Identity service URL")
    username: Optional[str] = None
    login_url: Optional[str] = None
    client_id: Optional[str] = None
    issued_at: Optional[datetime] = None

    @property
    def org_id(self) -> Optional[str]:
        parts = self._id_parts()
        return parts[0] if parts else None

    @property
    def user_id(self) -> Optional[str]:
        parts = self._id_parts()
        return parts[1] if parts else None

    @property
    def storage_key(self) -> str:
        """Name the credential is stored under: username, else org/user ids."""
        if self.username:
            key = self.username
        elif self.org_id and self.user_id:
            key = f"{self.org_id}-{self.user_id}"
        else:
            key = quote(self.instance_url, safe="")
        return _SAFE_NAME.sub("_", key)

    def get_fields(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    def get_front_door_url(self) -> str:
        """URL that opens an authenticated browser session in the org."""
        base = self.instance_url.rstrip("/")
        return f"{base}/secur/frontdoor.jsp?sid={quote(self.access_token, safe='')}"

    def save(self, store: Optional[CredentialStore] = None) -> Path:
        """Persist this credential and return the file it was written to."""
        store = store or CredentialStore(self.storage_key)
        store.save(self)
        return store.path

    def _id_parts(self) -> Optional[tuple[str, str]]:
        if not self.id_url:
            return None
        segments = [s for s in self.id_url.rstrip("/").split("/") if s]
        if len(segments) < 3 or segments[-3] != "id":
            return None
        return segments[-2], segments[-1]


def _credentials_dir() -> Path:
    path = get_data_dir() / "credentials"
    path.mkdir(parents=True, exist_ok=True)
    return path


class CredentialStore:
    """Writes the credential stored under one name.

    Args:
        name: Storage key, usually :attr:`Credential.storage_key`.

    Example::

        store = CredentialStore("user@example.com")
        store.save(credential)
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._path = _credentials_dir() / f"{name}.json"

    @property
    def name(self) -> str:
        return self._name

    @property
    def path(self) -> Path:
        return self._path

    def save(self, credential: Credential) -> None:
        """Persist *credential* atomically with ``0o600`` permissions."""
        text = json.dumps(credential.model_dump(mode="json"), indent=2) + "\n"
        atomic_write(self._path, text, mode=0o600)
