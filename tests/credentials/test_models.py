"""Tests for credential data models."""

from __future__ import annotations

import pickle
from datetime import timedelta

import pytest
from pydantic import BaseModel, SecretStr, ValidationError

from dgk.credentials.models import Credential, CredentialScope, validate_role
from tests.helpers import NOW, ROLE


def make_credential(token: str = "tok-123") -> Credential:
    return Credential(
        token=SecretStr(token),
        scope=CredentialScope.for_environment("dev", ROLE),
        issued_at=NOW,
        expires_at=NOW + timedelta(minutes=15),
    )


class TestValidateRole:
    def test_valid(self) -> None:
        assert validate_role(ROLE) == ROLE
        assert validate_role("arn:aws-us-gov:iam::123456789012:role/path/to/deployer")

    @pytest.mark.parametrize(
        "role",
        [
            "deployer",
            "arn:aws:iam::12345:role/deployer",
            f"{ROLE},{ROLE}",
            f"{ROLE} arn:aws:iam::210987654321:role/admin",
            "arn:aws:iam::123456789012:user/alice",
        ],
    )
    def test_invalid(self, role: str) -> None:
        with pytest.raises(ValueError, match="invalid role"):
            validate_role(role)


class TestCredentialScope:
    def test_within(self) -> None:
        dev = CredentialScope.for_environment("dev", ROLE)
        both = CredentialScope(environments=frozenset({"dev", "prod"}), role=ROLE)
        other_role = CredentialScope.for_environment("dev", "arn:aws:iam::123456789012:role/admin")

        assert dev.within(dev)
        assert dev.within(both)
        assert not both.within(dev)
        assert not other_role.within(dev)

    def test_describe(self) -> None:
        both = CredentialScope(environments=frozenset({"prod", "dev"}), role=ROLE)
        assert both.describe() == f"{ROLE} for dev+prod"

    def test_rejects_bad_environment(self) -> None:
        with pytest.raises(ValidationError):
            CredentialScope(environments=frozenset({"prod+dev"}), role=ROLE)


class TestCredential:
    def test_secret(self) -> None:
        assert make_credential().secret() == "tok-123"

    def test_repr_hides_token(self) -> None:
        credential = make_credential()
        assert "tok-123" not in repr(credential)
        assert "tok-123" not in str(credential)

    def test_refuses_serialization(self) -> None:
        credential = make_credential()
        with pytest.raises(TypeError):
            credential.model_dump()
        with pytest.raises(TypeError):
            credential.model_dump_json()

    def test_refuses_nested_serialization(self) -> None:
        class Holder(BaseModel):
            credential: Credential

        holder = Holder(credential=make_credential())
        with pytest.raises(Exception) as exc_info:
            holder.model_dump_json()
        assert "tok-123" not in str(exc_info.value)

    def test_refuses_pickling(self) -> None:
        with pytest.raises(TypeError):
            pickle.dumps(make_credential())
