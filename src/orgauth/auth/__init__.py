"""Credentials produced by the web login flow and how they are obtained.

- :class:`Credential` / :class:`CredentialStore` -- token model and its
  on-disk persistence.
- :class:`IdentityExchanger` -- contract for turning an authorization code
  into a :class:`Credential`.
- :class:`TokenExchanger` -- default implementation using the OAuth2 token
  endpoint.
"""

from orgauth.auth.credential_store import Credential, CredentialStore
from orgauth.auth.identity import IdentityExchanger, TokenExchanger

__all__ = [
    "Credential",
    "CredentialStore",
    "IdentityExchanger",
    "TokenExchanger",
]
