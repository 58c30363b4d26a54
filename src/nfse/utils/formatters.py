from __future__ import annotations


def format_cpf(digits: str) -> str:
    """Format 11 digits as ###.###.###-##."""
    return f"{digits[:3]}.{digits[3:6]}.{digits[6:9]}-{digits[9:]}"


def format_cnpj(digits: str) -> str:
    """Format 14 digits as ##.###.###/####-##."""
    return f"{digits[:2]}.{digits[2:5]}.{digits[5:8]}/{digits[8:12]}-{digits[12:]}"


def short_key(access_key: str) -> str:
    """Abbreviate an access key for log lines and error messages."""
    return f"{access_key[:20]}…" if len(access_key) > 20 else access_key
