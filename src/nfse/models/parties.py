from __future__ import annotations

from dataclasses import dataclass

from nfse.models.enums import (
    MissingNifReason,
    MunicipalSpecialRegime,
    SimplesNacionalOption,
    SimplesNacionalRegime,
)
from nfse.models.taxpayer import TaxpayerId, parse_taxpayer_id


@dataclass(frozen=True)
class Address:
    """National (cMun + CEP) or foreign (cPais + postal code) address."""

    logradouro: str
    numero: str
    bairro: str
    cod_municipio: str | None = None
    cep: str | None = None
    pais: str | None = None
    cod_postal: str | None = None
    cidade: str | None = None
    estado: str | None = None
    complemento: str | None = None

    @property
    def is_foreign(self) -> bool:
        return self.pais is not None and self.pais != "BR"

    @classmethod
    def from_dict(cls, d: dict) -> Address:
        return cls(
            logradouro=d["logradouro"],
            numero=str(d.get("numero", "S/N")),
            bairro=d.get("bairro", "n/a"),
            cod_municipio=_opt_str(d.get("cod_municipio")),
            cep=_opt_str(d.get("cep")),
            pais=d.get("pais"),
            cod_postal=_opt_str(d.get("cod_postal")),
            cidade=d.get("cidade"),
            estado=d.get("estado"),
            complemento=d.get("complemento"),
        )


def _opt_str(value: object) -> str | None:
    return None if value is None else str(value)


@dataclass(frozen=True)
class Provider:
    """Service provider (prestador) issuing the NFS-e."""

    taxpayer_id: TaxpayerId
    razao_social: str | None = None
    inscricao_municipal: str | None = None
    fone: str | None = None
    email: str | None = None
    endereco: Address | None = None
    op_simp_nac: SimplesNacionalOption = SimplesNacionalOption.NAO_OPTANTE
    reg_ap_trib_sn: SimplesNacionalRegime | None = None
    reg_esp_trib: MunicipalSpecialRegime = MunicipalSpecialRegime.NENHUM

    @classmethod
    def from_dict(cls, d: dict) -> Provider:
        """Create a Provider from a YAML-loaded dict, applying defaults for optional fields."""
        endereco = d.get("endereco")
        reg_ap = d.get("reg_ap_trib_sn")
        return cls(
            taxpayer_id=parse_taxpayer_id(str(d.get("cnpj") or d["cpf"])),
            razao_social=d.get("razao_social"),
            inscricao_municipal=_opt_str(d.get("inscricao_municipal")),
            fone=_opt_str(d.get("fone")),
            email=d.get("email"),
            endereco=Address.from_dict(endereco) if endereco else None,
            op_simp_nac=SimplesNacionalOption(int(d.get("op_simp_nac", 1))),
            reg_ap_trib_sn=SimplesNacionalRegime(int(reg_ap)) if reg_ap is not None else None,
            reg_esp_trib=MunicipalSpecialRegime(int(d.get("reg_esp_trib", 0))),
        )


@dataclass(frozen=True)
class Recipient:
    """Service taker (tomador).

    Identified by a CPF/CNPJ, by a foreign NIF, or by neither, in which case
    ``missing_nif_reason`` must say why.
    """

    nome: str
    taxpayer_id: TaxpayerId | None = None
    nif: str | None = None
    missing_nif_reason: MissingNifReason | None = None
    inscricao_municipal: str | None = None
    endereco: Address | None = None
    fone: str | None = None
    email: str | None = None

    @property
    def is_identified(self) -> bool:
        return self.taxpayer_id is not None or bool(self.nif)

    @classmethod
    def from_dict(cls, d: dict) -> Recipient:
        doc = d.get("cnpj") or d.get("cpf")
        reason = d.get("missing_nif_reason")
        endereco = d.get("endereco")
        return cls(
            nome=d["nome"],
            taxpayer_id=parse_taxpayer_id(str(doc)) if doc else None,
            nif=_opt_str(d.get("nif")),
            missing_nif_reason=MissingNifReason(int(reason)) if reason is not None else None,
            inscricao_municipal=_opt_str(d.get("inscricao_municipal")),
            endereco=Address.from_dict(endereco) if endereco else None,
            fone=_opt_str(d.get("fone")),
            email=d.get("email"),
        )


@dataclass(frozen=True)
class Intermediary:
    nome: str
    taxpayer_id: TaxpayerId | None = None
    nif: str | None = None
    endereco: Address | None = None

    @classmethod
    def from_dict(cls, d: dict) -> Intermediary:
        doc = d.get("cnpj") or d.get("cpf")
        endereco = d.get("endereco")
        return cls(
            nome=d["nome"],
            taxpayer_id=parse_taxpayer_id(str(doc)) if doc else None,
            nif=_opt_str(d.get("nif")),
            endereco=Address.from_dict(endereco) if endereco else None,
        )
