from __future__ import annotations

import re
from datetime import date
from decimal import Decimal, InvalidOperation

CPF_LENGTH = 11
CNPJ_LENGTH = 14

_CPF_WEIGHTS_1 = tuple(range(10, 1, -1))
_CPF_WEIGHTS_2 = tuple(range(11, 1, -1))
_CNPJ_WEIGHTS_1 = (5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2)
_CNPJ_WEIGHTS_2 = (6, 5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2)

_NON_DIGIT = re.compile(r"\D")


def only_digits(value: str) -> str:
    """Strip every non-digit character (dots, slashes, dashes, spaces)."""
    return _NON_DIGIT.sub("", value)


def is_repeated_sequence(digits: str) -> bool:
    return len(digits) > 0 and digits == digits[0] * len(digits)


def check_digit(digits: str, weights: tuple[int, ...]) -> int:
    """Weighted-sum modulo 11 check digit: remainder < 2 gives 0, else 11 - remainder."""
    total = sum(int(d) * w for d, w in zip(digits, weights))
    remainder = total % 11
    return 0 if remainder < 2 else 11 - remainder


def _has_valid_check_digits(
    digits: str,
    weights_1: tuple[int, ...],
    weights_2: tuple[int, ...],
) -> bool:
    body = digits[: len(weights_1)]
    first = check_digit(body, weights_1)
    if first != int(digits[-2]):
        return False
    second = check_digit(body + str(first), weights_2)
    return second == int(digits[-1])


def is_valid_cpf(value: str) -> bool:
    """Validate an 11-digit CPF (punctuation allowed)."""
    digits = only_digits(value)
    if len(digits) != CPF_LENGTH or is_repeated_sequence(digits):
        return False
    return _has_valid_check_digits(digits, _CPF_WEIGHTS_1, _CPF_WEIGHTS_2)


def is_valid_cnpj(value: str) -> bool:
    """Validate a 14-digit CNPJ (punctuation allowed)."""
    digits = only_digits(value)
    if len(digits) != CNPJ_LENGTH or is_repeated_sequence(digits):
        return False
    return _has_valid_check_digits(digits, _CNPJ_WEIGHTS_1, _CNPJ_WEIGHTS_2)


def validate_monetary(value: str) -> str:
    """Validate and normalize a monetary value string.

    Returns the value with 2 decimal places (SEFIN XML requirement).
    Raises ValueError for invalid or non-positive values.
    """
    try:
        d = Decimal(value)
        if not d.is_finite():
            raise InvalidOperation
        if d <= 0:
            raise ValueError(f"Valor deve ser positivo: '{value}'")
    except InvalidOperation:
        raise ValueError(f"Valor numerico invalido: '{value}'") from None
    return f"{d:.2f}"


def validate_date(value: str) -> str:
    """Validate an ISO date string (YYYY-MM-DD)."""
    try:
        date.fromisoformat(value)
    except ValueError:
        raise ValueError(f"Data invalida: '{value}'. Use YYYY-MM-DD.") from None
    return value


def validate_c_trib_nac(value: str) -> str:
    """Validate cTribNac: exactly 6 numeric digits."""
    if not re.fullmatch(r"\d{6}", value):
        raise ValueError("cTribNac: deve ter 6 digitos numericos")
    return value


def validate_c_nbs(value: str) -> str:
    """Validate cNBS: exactly 9 numeric digits."""
    if not re.fullmatch(r"\d{9}", value):
        raise ValueError("cNBS: deve ter 9 digitos numericos")
    return value


def validate_municipality_code(value: str) -> str:
    """Validate an IBGE municipality code: exactly 7 numeric digits."""
    if not re.fullmatch(r"\d{7}", value):
        raise ValueError("Codigo de municipio: deve ter 7 digitos numericos (IBGE)")
    return value


def validate_access_key(value: str) -> str:
    """Validate an NFS-e access key: exactly 50 alphanumeric characters."""
    if not re.fullmatch(r"[A-Za-z0-9]{50}", value):
        raise ValueError(
            "Chave de acesso: deve ter exatamente 50 caracteres alfanuméricos"
        )
    return value


def validate_dps_id(value: str) -> str:
    """Validate a DPS identifier: 'DPS' followed by 42 digits."""
    if not re.fullmatch(r"DPS\d{42}", value):
        raise ValueError("Id da DPS: deve ser 'DPS' seguido de 42 digitos")
    return value


def validate_percent(value: str) -> str:
    """Validate and normalize a percentage value (0.00-100.00)."""
    try:
        d = Decimal(value)
        if not d.is_finite():
            raise InvalidOperation
    except InvalidOperation:
        raise ValueError(f"Percentual invalido: '{value}'") from None
    if d < 0 or d > 100:
        raise ValueError("Percentual deve estar entre 0.00 e 100.00")
    return f"{d:.2f}"
