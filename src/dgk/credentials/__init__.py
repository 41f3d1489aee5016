"""Credential subsystem — scoped, short-lived credentials for one apply."""

from dgk.credentials.broker import CredentialBroker
from dgk.credentials.models import (
    Credential,
    CredentialScope,
    IssuedCredential,
    TrustAssertion,
)
from dgk.credentials.providers import (
    AssertionSource,
    EnvAssertionSource,
    HTTPTrustProvider,
    StaticTrustProvider,
    TrustProvider,
)

__all__ = [
    "AssertionSource",
    "Credential",
    "CredentialBroker",
    "CredentialScope",
    "EnvAssertionSource",
    "HTTPTrustProvider",
    "IssuedCredential",
    "StaticTrustProvider",
    "TrustAssertion",
    "TrustProvider",
]
