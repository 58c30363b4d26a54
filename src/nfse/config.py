from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta, timezone
from pathlib import Path

import platformdirs
import yaml
from dotenv import load_dotenv

APP_NAME = "nfse-nacional"
KEYRING_SERVICE = APP_NAME
KEYRING_USERNAME = "cert-pfx-password"


def _resolve_config_dir_for_dotenv() -> Path | None:
    """Resolve the config dir for .env loading, before .env itself is read.

    Returns None when only platformdirs would resolve and the directory
    does not exist yet.
    """
    from_env = os.environ.get("NFSE_CONFIG_DIR")
    if from_env:
        return Path(from_env)
    pd = Path(platformdirs.user_config_dir(APP_NAME))
    if pd.is_dir():
        return pd
    return None


# Load .env: cwd first (highest priority), then config dir (won't override)
load_dotenv()
_cfg_dir = _resolve_config_dir_for_dotenv()
if _cfg_dir is not None:
    load_dotenv(_cfg_dir / ".env")


def get_config_dir() -> Path:
    """Resolve config directory. Re-evaluated on each call to pick up env changes."""
    from_env = os.environ.get("NFSE_CONFIG_DIR")
    if from_env:
        return Path(from_env)
    return Path(platformdirs.user_config_dir(APP_NAME))


NFSE_NS = "http://www.sped.fazenda.gov.br/nfse"
DSIG_NS = "http://www.w3.org/2000/09/xmldsig#"

BRT = timezone(timedelta(hours=-3))

VER_APLIC = "nfse-nacional_1.0"

ENDPOINTS = {
    "homologacao": {
        "sefin": "https://sefin.producaorestrita.nfse.gov.br/SefinNacional",
        "adn": "https://adn.producaorestrita.nfse.gov.br",
    },
    "producao": {
        "sefin": "https://sefin.nfse.gov.br/SefinNacional",
        "adn": "https://adn.nfse.gov.br",
    },
}

TP_AMB = {"homologacao": "2", "producao": "1"}

SEFIN_TIMEOUT = 60
ADN_TIMEOUT = 30


@dataclass(frozen=True)
class Settings:
    """Library settings, from ``settings.yaml`` in the config dir.

    Every key is optional::

        environment: homologacao
        sefin_timeout: 60
        adn_timeout: 30
        ver_aplic: minha-empresa_2.1
        endpoints:
          sefin: https://sefin.example/SefinNacional
          adn: https://adn.example
    """

    environment: str = "homologacao"
    sefin_timeout: float = SEFIN_TIMEOUT
    adn_timeout: float = ADN_TIMEOUT
    ver_aplic: str = VER_APLIC
    endpoints: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: dict) -> Settings:
        env = str(d.get("environment", "homologacao"))
        if env not in ENDPOINTS:
            raise ValueError(
                f"Ambiente invalido: '{env}'. Use 'homologacao' ou 'producao'."
            )
        unknown = set(d.get("endpoints") or {}) - {"sefin", "adn"}
        if unknown:
            raise ValueError(f"Endpoints desconhecidos: {', '.join(sorted(unknown))}")
        return cls(
            environment=env,
            sefin_timeout=float(d.get("sefin_timeout", SEFIN_TIMEOUT)),
            adn_timeout=float(d.get("adn_timeout", ADN_TIMEOUT)),
            ver_aplic=str(d.get("ver_aplic", VER_APLIC)),
            endpoints={k: str(v) for k, v in (d.get("endpoints") or {}).items()},
        )


def load_yaml(path: Path) -> dict:
    """Load and parse a YAML file, returning the top-level dict."""
    return yaml.safe_load(path.read_text()) or {}


def load_settings() -> Settings:
    """Load settings.yaml from the config dir; defaults when the file is absent."""
    path = get_config_dir() / "settings.yaml"
    if not path.exists():
        return Settings()
    return Settings.from_dict(load_yaml(path))


# --- Keyring helpers ---


def _get_keyring_password() -> str | None:
    """Try to get the certificate password from the OS keyring.

    Returns None on any failure (no backend, not stored, dbus errors, etc.).
    """
    try:
        import keyring

        return keyring.get_password(KEYRING_SERVICE, KEYRING_USERNAME)
    except Exception:
        return None


def set_keyring_password(password: str) -> bool:
    """Store the certificate password in the OS keyring. Returns True on success."""
    try:
        import keyring

        keyring.set_password(KEYRING_SERVICE, KEYRING_USERNAME, password)
        return True
    except Exception:
        return False


# --- Certificate access ---


def get_cert_path() -> str:
    """Return the path to the .pfx certificate from CERT_PFX_PATH env var.

    Raises KeyError if the variable is not set.
    """
    return os.environ["CERT_PFX_PATH"]


def get_cert_password() -> str:
    """Return the certificate password.

    Priority: 1) CERT_PFX_PASSWORD env var, 2) OS keyring.
    Raises KeyError if neither source has the password.
    """
    pwd = os.environ.get("CERT_PFX_PASSWORD")
    if pwd is not None:
        return pwd
    pwd = _get_keyring_password()
    if pwd is not None:
        return pwd
    raise KeyError("CERT_PFX_PASSWORD")
