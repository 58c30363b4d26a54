"""Taxpayer identifiers: CPF (individual) and CNPJ (organization).

``TaxpayerId`` is a closed union of the two legal variants. Both are frozen
value types that can only hold digits that passed validation, so any
instance in hand is known to be valid.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import ClassVar, Union

from nfse.services.exceptions import InvalidIdentifier
from nfse.utils.formatters import format_cnpj, format_cpf
from nfse.utils.validators import (
    CNPJ_LENGTH,
    CPF_LENGTH,
    is_repeated_sequence,
    is_valid_cnpj,
    is_valid_cpf,
    only_digits,
)


class TaxpayerKind(enum.Enum):
    INDIVIDUAL = "CPF"
    ORGANIZATION = "CNPJ"


def _checked_digits(raw: str, length: int, label: str, is_valid) -> str:
    digits = only_digits(raw)
    if len(digits) != length:
        raise InvalidIdentifier(
            f"{label} deve conter exatamente {length} dígitos (recebido: {len(digits)})"
        )
    if is_repeated_sequence(digits):
        raise InvalidIdentifier(f"{label} inválido: sequência repetida")
    if not is_valid(digits):
        raise InvalidIdentifier(f"{label} inválido: dígitos verificadores incorretos")
    return digits


@dataclass(frozen=True)
class Cpf:
    """Individual taxpayer (11 digits)."""

    digits: str

    kind: ClassVar[TaxpayerKind] = TaxpayerKind.INDIVIDUAL
    xml_tag: ClassVar[str] = "CPF"
    inscription_type: ClassVar[str] = "1"

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "digits", _checked_digits(self.digits, CPF_LENGTH, "CPF", is_valid_cpf)
        )

    @property
    def formatted(self) -> str:
        return format_cpf(self.digits)

    def __str__(self) -> str:
        return self.digits


@dataclass(frozen=True)
class Cnpj:
    """Organization taxpayer (14 digits)."""

    digits: str

    kind: ClassVar[TaxpayerKind] = TaxpayerKind.ORGANIZATION
    xml_tag: ClassVar[str] = "CNPJ"
    inscription_type: ClassVar[str] = "2"

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "digits", _checked_digits(self.digits, CNPJ_LENGTH, "CNPJ", is_valid_cnpj)
        )

    @property
    def formatted(self) -> str:
        return format_cnpj(self.digits)

    def __str__(self) -> str:
        return self.digits


TaxpayerId = Union[Cpf, Cnpj]


def parse_taxpayer_id(raw: str) -> TaxpayerId:
    """Parse a raw (possibly punctuated) CPF or CNPJ.

    Dispatches on the digit count: 11 is a CPF, 14 a CNPJ. Anything else,
    a repeated-digit sequence, or a check-digit mismatch raises
    InvalidIdentifier.
    """
    digits = only_digits(raw)
    if len(digits) == CPF_LENGTH:
        return Cpf(digits)
    if len(digits) == CNPJ_LENGTH:
        return Cnpj(digits)
    raise InvalidIdentifier(
        f"Documento deve ter {CPF_LENGTH} (CPF) ou {CNPJ_LENGTH} (CNPJ) dígitos "
        f"(recebido: {len(digits)})"
    )


def is_valid_taxpayer_id(raw: str) -> bool:
    digits = only_digits(raw)
    if len(digits) == CPF_LENGTH:
        return is_valid_cpf(digits)
    if len(digits) == CNPJ_LENGTH:
        return is_valid_cnpj(digits)
    return False
