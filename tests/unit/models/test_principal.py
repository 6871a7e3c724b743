"""Tests for principal schemas and identifier normalization."""

import pytest
from pydantic import ValidationError

from src.models.db.principal import Principal
from src.models.domain.principal import (
    PrincipalCreate,
    PrincipalInfo,
    PrincipalRole,
    normalize_principal,
)


class TestNormalizePrincipal:
    """Tests for normalize_principal."""

    def test_trims_and_lowercases(self) -> None:
        assert normalize_principal("  0xAbCdEf12 ") == "0xabcdef12"

    def test_accepts_did_style_identifiers(self) -> None:
        assert normalize_principal("did:web:clinic.example") == "did:web:clinic.example"

    @pytest.mark.parametrize("value", ["", "  ", "ab", "has space", "x" * 129, "semi;colon"])
    def test_rejects_malformed(self, value: str) -> None:
        with pytest.raises(ValueError):
            normalize_principal(value)


class TestPrincipalCreate:
    """Tests for PrincipalCreate schema."""

    def test_normalizes_wallet(self) -> None:
        data = PrincipalCreate(wallet_address="0xDOC001", role=PrincipalRole.DOCTOR)

        assert data.wallet_address == "0xdoc001"

    def test_rejects_bad_wallet(self) -> None:
        with pytest.raises(ValidationError):
            PrincipalCreate(wallet_address="not valid", role=PrincipalRole.PATIENT)

    def test_rejects_unknown_role(self) -> None:
        with pytest.raises(ValidationError):
            PrincipalCreate(wallet_address="0xdoc001", role="nurse")  # type: ignore[arg-type]


class TestPrincipalInfo:
    """Tests for the cached lookup value."""

    def test_is_immutable(self) -> None:
        info = PrincipalInfo(wallet_address="0xdoc001", role=PrincipalRole.DOCTOR)

        with pytest.raises(ValidationError):
            info.role = PrincipalRole.ADMIN  # type: ignore[misc]


class TestPrincipalModel:
    """Tests for Principal database model."""

    def test_tablename(self) -> None:
        assert Principal.__tablename__ == "principals"

    def test_wallet_is_unique(self) -> None:
        assert Principal.__table__.c.wallet_address.unique is True
