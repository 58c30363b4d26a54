"""Coded values of the NFS-e Nacional layout.

Integer codes are written to XML with ``str(member.value)``; the string
enums mirror the values the authority returns in JSON payloads.
"""

from __future__ import annotations

import enum


class Environment(enum.Enum):
    PRODUCAO = "producao"
    HOMOLOGACAO = "homologacao"

    @property
    def tp_amb(self) -> str:
        return "1" if self is Environment.PRODUCAO else "2"

    @classmethod
    def from_tp_amb(cls, value: object) -> Environment:
        return cls.PRODUCAO if str(value) == "1" else cls.HOMOLOGACAO


class SimplesNacionalOption(enum.IntEnum):
    NAO_OPTANTE = 1
    MEI = 2
    ME_EPP = 3


class SimplesNacionalRegime(enum.IntEnum):
    FEDERAL_MUNICIPAL_SN = 1
    FEDERAL_SN_ISSQN_NFSE = 2
    FEDERAL_MUNICIPAL_NFSE = 3


class MunicipalSpecialRegime(enum.IntEnum):
    NENHUM = 0
    ATO_COOPERADO = 1
    ESTIMATIVA = 2
    MICROEMPRESA_MUNICIPAL = 3
    NOTARIO_REGISTRADOR = 4
    PROFISSIONAL_AUTONOMO = 5
    SOCIEDADE_PROFISSIONAIS = 6


class MunicipalBenefitType(enum.IntEnum):
    ISENCAO = 1
    REDUCAO_BC_PERCENTUAL = 2
    REDUCAO_BC_VALOR = 3
    ALIQUOTA_DIFERENCIADA = 4


class IssqnTaxation(enum.IntEnum):
    OPERACAO_TRIBUTAVEL = 1
    IMUNIDADE = 2
    EXPORTACAO = 3
    NAO_INCIDENCIA = 4


class IssRetention(enum.IntEnum):
    NAO_RETIDO = 1
    RETIDO_TOMADOR = 2
    RETIDO_INTERMEDIARIO = 3


class ProvisionMode(enum.IntEnum):
    DESCONHECIDO = 0
    TRANSFRONTEIRICO = 1
    CONSUMO_NO_BRASIL = 2
    PRESENCA_COMERCIAL_EXTERIOR = 3
    MOVIMENTO_TEMPORARIO_PF = 4


class EmissionProcess(enum.IntEnum):
    APLICATIVO_CONTRIBUINTE = 1
    APLICATIVO_FISCO_WEB = 2
    APLICATIVO_FISCO_APP = 3


class PartyLink(enum.IntEnum):
    SEM_VINCULO = 0
    CONTROLADA = 1
    CONTROLADORA = 2
    COLIGADA = 3
    MATRIZ = 4
    FILIAL = 5
    OUTRO = 6


class MissingNifReason(enum.IntEnum):
    NAO_INFORMADO_ORIGEM = 0
    DISPENSADO = 1
    NAO_EXIGIDO = 2


class IssuerRole(enum.IntEnum):
    PRESTADOR = 1
    TOMADOR = 2
    INTERMEDIARIO = 3


class SubstitutionReason(enum.IntEnum):
    DESENQUADRAMENTO_SN = 1
    ENQUADRAMENTO_SN = 2
    INCLUSAO_IMUNIDADE = 3
    EXCLUSAO_IMUNIDADE = 4
    REJEICAO_TOMADOR = 5
    OUTROS = 99


class CancellationReason(enum.IntEnum):
    ERRO_EMISSAO = 1
    SERVICO_NAO_PRESTADO = 2
    OUTROS = 9


class NfseStatus(enum.Enum):
    NORMAL = "NORMAL"
    CANCELAMENTO_SOLICITADO = "CANCELAMENTO_SOLICITADO"
    CANCELADA = "CANCELADA"
    SUBSTITUIDA = "SUBSTITUIDA"
    CANCELADA_POR_SUBSTITUICAO = "CANCELADA_POR_SUBSTITUICAO"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset(
    {NfseStatus.CANCELADA, NfseStatus.SUBSTITUIDA, NfseStatus.CANCELADA_POR_SUBSTITUICAO}
)


class EventType(enum.IntEnum):
    CANCELAMENTO = 101
    SUBSTITUICAO = 102
    MANIFESTACAO_CONFIRMACAO = 201
    MANIFESTACAO_REJEICAO = 202

    @property
    def is_manifestation(self) -> bool:
        return self in (EventType.MANIFESTACAO_CONFIRMACAO, EventType.MANIFESTACAO_REJEICAO)


class ManifestationKind(enum.Enum):
    CONFIRMACAO = "CONFIRMACAO"
    REJEICAO = "REJEICAO"

    @property
    def event_type(self) -> EventType:
        if self is ManifestationKind.CONFIRMACAO:
            return EventType.MANIFESTACAO_CONFIRMACAO
        return EventType.MANIFESTACAO_REJEICAO


class ActorRole(enum.Enum):
    TOMADOR = "TOMADOR"
    PRESTADOR = "PRESTADOR"
    INTERMEDIARIO = "INTERMEDIARIO"


class DocumentKind(enum.Enum):
    NFSE = "NFSE"
    EVENTO = "EVENTO"


class ProcessingStatus(enum.Enum):
    DOCUMENTOS_LOCALIZADOS = "DOCUMENTOS_LOCALIZADOS"
    NENHUM_DOCUMENTO_LOCALIZADO = "NENHUM_DOCUMENTO_LOCALIZADO"
    REJEICAO = "REJEICAO"
