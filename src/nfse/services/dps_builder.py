from __future__ import annotations

from typing import TYPE_CHECKING

from lxml import etree

from nfse.models.enums import IssuerRole
from nfse.utils.xml_utils import NSMAP, add_child, add_optional, qname, to_xml_bytes

if TYPE_CHECKING:
    from nfse.models.draft import Dps
    from nfse.models.parties import Address
    from nfse.models.taxpayer import TaxpayerId

DPS_VERSION = "1.00"


def _identify(
    parent: etree._Element,
    taxpayer_id: TaxpayerId | None,
    nif: str | None = None,
    missing_nif_reason: int | None = None,
) -> None:
    """Write exactly one of CNPJ / CPF / NIF / cNaoNIF."""
    if taxpayer_id is not None:
        add_child(parent, taxpayer_id.xml_tag, taxpayer_id.digits)
    elif nif:
        add_child(parent, "NIF", nif)
    elif missing_nif_reason is not None:
        add_child(parent, "cNaoNIF", str(int(missing_nif_reason)))


def _address(parent: etree._Element, addr: Address) -> None:
    end = add_child(parent, "end")
    if addr.is_foreign:
        ext = add_child(end, "endExt")
        add_child(ext, "cPais", addr.pais)
        add_child(ext, "cEndPost", addr.cod_postal or "")
        add_child(ext, "xCidade", addr.cidade or "")
        add_child(ext, "xEstProvReg", addr.estado or "")
    else:
        nac = add_child(end, "endNac")
        add_child(nac, "cMun", addr.cod_municipio or "")
        add_child(nac, "CEP", addr.cep or "")
    add_child(end, "xLgr", addr.logradouro)
    add_child(end, "nro", addr.numero)
    add_optional(end, "xCpl", addr.complemento)
    add_child(end, "xBairro", addr.bairro)


def build_dps(dps: Dps) -> etree._Element:
    """Build a DPS XML element ready for signing.

    Returns the <DPS> root element with namespace. Element order follows the
    national layout; optional groups are omitted when empty.
    """
    root = etree.Element(qname("DPS"), nsmap=NSMAP)  # type: ignore[arg-type]  # lxml stubs don't model None key for default ns
    root.set("versao", DPS_VERSION)

    inf = add_child(root, "infDPS")
    inf.set("Id", dps.dps_id)

    add_child(inf, "tpAmb", dps.environment.tp_amb)
    add_child(inf, "dhEmi", dps.dh_emi)
    add_child(inf, "verAplic", dps.ver_aplic)
    add_child(inf, "serie", dps.serie)
    add_child(inf, "nDPS", str(dps.n_dps))
    add_child(inf, "dCompet", dps.competencia)
    add_child(inf, "tpEmit", str(int(dps.tp_emit)))
    add_child(inf, "cLocEmi", dps.c_loc_emi)

    # subst (substituicao), optional
    if dps.substitution is not None:
        subst = add_child(inf, "subst")
        add_child(subst, "chSubstda", dps.substitution.ch_substda)
        add_child(subst, "cMotivo", f"{int(dps.substitution.c_motivo):02d}")
        add_optional(subst, "xMotivo", dps.substitution.x_motivo)

    # prest (prestador)
    prov = dps.provider
    prest = add_child(inf, "prest")
    _identify(prest, prov.taxpayer_id)
    add_optional(prest, "IM", prov.inscricao_municipal)
    # Name and address only when someone other than the provider issues
    if dps.tp_emit is not IssuerRole.PRESTADOR:
        add_optional(prest, "xNome", prov.razao_social)
        if prov.endereco is not None:
            _address(prest, prov.endereco)
    add_optional(prest, "fone", prov.fone)
    add_optional(prest, "email", prov.email)
    reg = add_child(prest, "regTrib")
    add_child(reg, "opSimpNac", str(int(prov.op_simp_nac)))
    if prov.reg_ap_trib_sn is not None:
        add_child(reg, "regApTribSN", str(int(prov.reg_ap_trib_sn)))
    add_child(reg, "regEspTrib", str(int(prov.reg_esp_trib)))

    # toma (tomador), optional
    rec = dps.recipient
    if rec is not None:
        toma = add_child(inf, "toma")
        _identify(toma, rec.taxpayer_id, rec.nif, rec.missing_nif_reason)
        add_optional(toma, "IM", rec.inscricao_municipal)
        add_child(toma, "xNome", rec.nome)
        if rec.endereco is not None:
            _address(toma, rec.endereco)
        add_optional(toma, "fone", rec.fone)
        add_optional(toma, "email", rec.email)

    # interm (intermediario), optional
    interm_party = dps.intermediary
    if interm_party is not None:
        interm = add_child(inf, "interm")
        _identify(interm, interm_party.taxpayer_id, interm_party.nif)
        add_child(interm, "xNome", interm_party.nome)
        if interm_party.endereco is not None:
            _address(interm, interm_party.endereco)

    # serv (servico)
    srv = dps.service
    serv = add_child(inf, "serv")
    loc = add_child(serv, "locPrest")
    if srv.c_loc_prestacao is not None:
        add_child(loc, "cLocPrestacao", srv.c_loc_prestacao)
    else:
        add_child(loc, "cPaisPrestacao", srv.c_pais_prestacao)
    cserv = add_child(serv, "cServ")
    add_child(cserv, "cTribNac", srv.c_trib_nac)
    add_optional(cserv, "cTribMun", srv.c_trib_mun)
    add_child(cserv, "xDescServ", srv.x_desc_serv)
    add_optional(cserv, "cNBS", srv.c_nbs)
    add_optional(cserv, "cIntContrib", srv.c_int_contrib)
    if srv.md_prestacao is not None:
        com_ext = add_child(serv, "comExt")
        add_child(com_ext, "mdPrestacao", str(int(srv.md_prestacao)))
        add_child(com_ext, "vincPrest", str(int(srv.vinc_prest or 0)))

    # valores
    tax = dps.taxes
    valores = add_child(inf, "valores")
    v_serv_prest = add_child(valores, "vServPrest")
    add_optional(v_serv_prest, "vReceb", tax.v_receb)
    add_child(v_serv_prest, "vServ", tax.v_serv)
    trib = add_child(valores, "trib")
    trib_mun = add_child(trib, "tribMun")
    add_child(trib_mun, "tribISSQN", str(int(tax.trib_issqn)))
    add_optional(trib_mun, "cPaisResult", tax.c_pais_result)
    if tax.tp_bm is not None:
        bm = add_child(trib_mun, "BM")
        add_child(bm, "tpBM", str(int(tax.tp_bm)))
    add_optional(trib_mun, "pAliq", tax.p_aliq)
    add_child(trib_mun, "tpRetISSQN", str(int(tax.tp_ret_issqn)))
    tot_trib = add_child(trib, "totTrib")
    if any(p is not None for p in (tax.p_tot_trib_fed, tax.p_tot_trib_est, tax.p_tot_trib_mun)):
        p_tot = add_child(tot_trib, "pTotTrib")
        add_child(p_tot, "pTotTribFed", tax.p_tot_trib_fed or "0.00")
        add_child(p_tot, "pTotTribEst", tax.p_tot_trib_est or "0.00")
        add_child(p_tot, "pTotTribMun", tax.p_tot_trib_mun or "0.00")
    else:
        add_child(tot_trib, "indTotTrib", "0")

    return root


def serialize(element: etree._Element) -> bytes:
    return to_xml_bytes(element)
