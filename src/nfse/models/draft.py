"""The DPS (Declaração de Prestação de Serviço) draft aggregate.

A ``Dps`` is immutable and caller-owned. ``validate()`` checks every field
and cross-field rule and raises ``ValidationFailed`` listing all violations
at once; ``to_canonical_xml()`` produces the exact bytes that get signed.
"""

from __future__ import annotations

import dataclasses
import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime

from lxml import etree

from nfse.config import VER_APLIC
from nfse.models.enums import (
    EmissionProcess,
    Environment,
    IssqnTaxation,
    IssRetention,
    IssuerRole,
    MunicipalBenefitType,
    MunicipalSpecialRegime,
    PartyLink,
    ProvisionMode,
    SimplesNacionalOption,
    SubstitutionReason,
)
from nfse.models.parties import Intermediary, Provider, Recipient
from nfse.services import dps_builder
from nfse.services.exceptions import ValidationFailed
from nfse.utils.dps_id import generate_dps_id
from nfse.utils.validators import (
    validate_access_key,
    validate_c_nbs,
    validate_c_trib_nac,
    validate_date,
    validate_monetary,
    validate_municipality_code,
    validate_percent,
)


@dataclass(frozen=True)
class Service:
    c_trib_nac: str
    x_desc_serv: str
    c_loc_prestacao: str | None = None
    c_pais_prestacao: str | None = None
    c_trib_mun: str | None = None
    c_nbs: str | None = None
    c_int_contrib: str | None = None
    md_prestacao: ProvisionMode | None = None
    vinc_prest: PartyLink | None = None


@dataclass(frozen=True)
class TaxDetail:
    v_serv: str
    v_receb: str | None = None
    trib_issqn: IssqnTaxation = IssqnTaxation.OPERACAO_TRIBUTAVEL
    tp_ret_issqn: IssRetention = IssRetention.NAO_RETIDO
    p_aliq: str | None = None
    tp_bm: MunicipalBenefitType | None = None
    c_pais_result: str | None = None

    # Approximate tax burden (Lei 12.741); all None means indTotTrib = 0
    p_tot_trib_fed: str | None = None
    p_tot_trib_est: str | None = None
    p_tot_trib_mun: str | None = None


@dataclass(frozen=True)
class Substitution:
    ch_substda: str
    c_motivo: SubstitutionReason
    x_motivo: str | None = None


@dataclass(frozen=True)
class Dps:
    provider: Provider
    service: Service
    taxes: TaxDetail
    serie: str
    n_dps: int
    competencia: str  # YYYY-MM-DD
    dh_emi: str  # ISO datetime with timezone
    c_loc_emi: str
    environment: Environment = Environment.HOMOLOGACAO
    recipient: Recipient | None = None
    intermediary: Intermediary | None = None
    tp_emit: IssuerRole = IssuerRole.PRESTADOR
    proc_emi: EmissionProcess = EmissionProcess.APLICATIVO_CONTRIBUINTE
    ver_aplic: str = VER_APLIC
    substitution: Substitution | None = None

    @property
    def dps_id(self) -> str:
        doc = self.provider.taxpayer_id
        return generate_dps_id(
            cod_municipio=self.c_loc_emi,
            inscricao=doc.digits,
            serie=self.serie,
            n_dps=self.n_dps,
            tp_insc=doc.inscription_type,
        )

    def with_substitution(
        self,
        ch_substda: str,
        c_motivo: SubstitutionReason,
        x_motivo: str | None = None,
    ) -> Dps:
        """Return a copy of this draft that replaces the NFS-e *ch_substda*."""
        return dataclasses.replace(
            self, substitution=Substitution(ch_substda, c_motivo, x_motivo)
        )

    def errors(self) -> dict[str, list[str]]:
        """Collect every violated field; an empty dict means the draft is valid."""
        errors: dict[str, list[str]] = defaultdict(list)

        def check(field: str, validator, value: str) -> None:
            try:
                validator(value)
            except ValueError as exc:
                errors[field].append(str(exc))

        # identification
        if not re.fullmatch(r"\d{1,5}", self.serie):
            errors["serie"].append("deve ter de 1 a 5 digitos numericos")
        if self.n_dps <= 0 or len(str(self.n_dps)) > 15:
            errors["nDPS"].append("deve ser um inteiro positivo de ate 15 digitos")
        check("dCompet", validate_date, self.competencia)
        try:
            if datetime.fromisoformat(self.dh_emi).tzinfo is None:
                errors["dhEmi"].append("deve informar o fuso horario (ex.: -03:00)")
        except ValueError:
            errors["dhEmi"].append(f"data/hora invalida: '{self.dh_emi}'")
        check("cLocEmi", validate_municipality_code, self.c_loc_emi)
        if not self.ver_aplic.strip():
            errors["verAplic"].append("versao do aplicativo esta vazia")

        # prestador
        prov = self.provider
        if prov.op_simp_nac is SimplesNacionalOption.ME_EPP and prov.reg_ap_trib_sn is None:
            errors["prest.regTrib.regApTribSN"].append(
                "obrigatorio para optante ME/EPP do Simples Nacional"
            )
        if (
            prov.reg_esp_trib is not MunicipalSpecialRegime.NENHUM
            and self.taxes.tp_bm is None
        ):
            errors["tribMun.tpBM"].append(
                "tipo de beneficio municipal obrigatorio com regime especial de tributacao"
            )

        # tomador
        rec = self.recipient
        if rec is not None:
            if not rec.nome.strip():
                errors["toma.xNome"].append("nome do tomador esta vazio")
            if not rec.is_identified and rec.missing_nif_reason is None:
                errors["toma.cNaoNIF"].append(
                    "motivo obrigatorio quando o tomador nao informa CPF/CNPJ/NIF"
                )

        # servico
        srv = self.service
        check("cServ.cTribNac", validate_c_trib_nac, srv.c_trib_nac)
        if srv.c_nbs is not None:
            check("cServ.cNBS", validate_c_nbs, srv.c_nbs)
        if not srv.x_desc_serv.strip():
            errors["cServ.xDescServ"].append("descricao do servico esta vazia")
        if srv.c_loc_prestacao is not None:
            check("locPrest.cLocPrestacao", validate_municipality_code, srv.c_loc_prestacao)
        elif srv.c_pais_prestacao is None:
            errors["locPrest.cLocPrestacao"].append(
                "informe o municipio ou o pais de prestacao"
            )

        # valores
        tax = self.taxes
        check("vServPrest.vServ", validate_monetary, tax.v_serv)
        if tax.v_receb is not None:
            check("vServPrest.vReceb", validate_monetary, tax.v_receb)
        if tax.p_aliq is not None:
            check("tribMun.pAliq", validate_percent, tax.p_aliq)
        if tax.trib_issqn is IssqnTaxation.EXPORTACAO and not tax.c_pais_result:
            errors["tribMun.cPaisResult"].append("obrigatorio para exportacao de servico")
        if tax.tp_ret_issqn is IssRetention.RETIDO_INTERMEDIARIO and self.intermediary is None:
            errors["tribMun.tpRetISSQN"].append(
                "retencao pelo intermediario exige intermediario informado"
            )
        for tag, value in (
            ("pTotTribFed", tax.p_tot_trib_fed),
            ("pTotTribEst", tax.p_tot_trib_est),
            ("pTotTribMun", tax.p_tot_trib_mun),
        ):
            if value is not None:
                check(f"totTrib.{tag}", validate_percent, value)

        # substituicao
        sub = self.substitution
        if sub is not None:
            check("subst.chSubstda", validate_access_key, sub.ch_substda)
            if sub.c_motivo is SubstitutionReason.OUTROS and not (sub.x_motivo or "").strip():
                errors["subst.xMotivo"].append("descricao obrigatoria para motivo 99 (outros)")

        return dict(errors)

    def validate(self) -> None:
        errors = self.errors()
        if errors:
            raise ValidationFailed(errors)

    def to_element(self) -> etree._Element:
        return dps_builder.build_dps(self)

    def to_canonical_xml(self) -> bytes:
        return dps_builder.serialize(self.to_element())
