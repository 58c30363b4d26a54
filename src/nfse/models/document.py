"""Typed views of what the authority returns.

None of these objects is persisted by the library: every gateway call
returns a fresh snapshot of the authority's state.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from nfse.models.enums import (
    ActorRole,
    DocumentKind,
    Environment,
    EventType,
    NfseStatus,
    ProcessingStatus,
)


def pick_key(d: dict, *names: str) -> object | None:
    """Case-insensitive lookup of the first present key among *names*."""
    lowered = {str(k).lower(): v for k, v in d.items()}
    for name in names:
        value = lowered.get(name.lower())
        if value is not None:
            return value
    return None


@dataclass(frozen=True)
class ProcessingMessage:
    """An alert or error returned by the authority.

    Severity-free: whether a response succeeded is decided by its success
    flag, never by the presence of messages.
    """

    code: str
    description: str = ""
    message: str = ""
    parameters: tuple[str, ...] = ()
    complement: str | None = None

    @classmethod
    def from_dict(cls, d: dict | str) -> ProcessingMessage:
        if not isinstance(d, dict):
            return cls(code="", message=str(d))
        params = pick_key(d, "Parametros", "parameters") or ()
        if isinstance(params, str):
            params = (params,)
        complement = pick_key(d, "Complemento", "complement")
        return cls(
            code=str(pick_key(d, "Codigo", "code") or ""),
            description=str(pick_key(d, "Descricao", "description") or ""),
            message=str(pick_key(d, "Mensagem", "message") or ""),
            parameters=tuple(str(p) for p in params),
            complement=str(complement) if complement is not None else None,
        )

    @property
    def text(self) -> str:
        return self.message or self.description

    def __str__(self) -> str:
        text = self.text
        if self.complement:
            text = f"{text} ({self.complement})"
        return f"{self.code}: {text}" if self.code else text


@dataclass(frozen=True)
class IssuedDocument:
    access_key: str
    status: NfseStatus = NfseStatus.NORMAL
    number: str | None = None
    protocol: str | None = None
    issued_at: str | None = None
    dps_id: str | None = None
    substituted_key: str | None = None
    xml: bytes | None = field(default=None, repr=False)


@dataclass(frozen=True)
class Event:
    event_type: EventType
    access_key: str
    sequence: int = 1
    registered_at: str | None = None
    actor: ActorRole | None = None
    reason_code: str | None = None
    reason_text: str | None = None
    protocol: str | None = None


@dataclass(frozen=True)
class DistributionItem:
    nsu: int
    access_key: str | None
    kind: DocumentKind
    event_type: EventType | None = None
    generated_at: str | None = None
    xml: bytes | None = field(default=None, repr=False)


@dataclass(frozen=True)
class DistributionPage:
    cursor: int
    status: ProcessingStatus
    items: tuple[DistributionItem, ...] = ()
    messages: tuple[ProcessingMessage, ...] = ()
    environment: Environment | None = None
    last_nsu: int | None = None
    max_nsu: int | None = None
    processed_at: str | None = None

    @property
    def next_cursor(self) -> int:
        """Cursor to resume from; never moves backwards."""
        return max([self.cursor, self.last_nsu or 0, *(item.nsu for item in self.items)])

    @property
    def has_more(self) -> bool:
        if self.max_nsu is not None:
            return self.next_cursor < self.max_nsu
        return bool(self.items) and self.next_cursor > self.cursor


@dataclass(frozen=True)
class IssuanceResult:
    document: IssuedDocument
    messages: tuple[ProcessingMessage, ...] = ()
    # True when an ambiguous timeout was resolved by finding the DPS already issued
    recovered: bool = False


@dataclass(frozen=True)
class BatchItemOutcome:
    dps_id: str
    document: IssuedDocument | None = None
    messages: tuple[ProcessingMessage, ...] = ()


@dataclass(frozen=True)
class BatchOutcome:
    """Result of a batch submission.

    The batch is atomic: when ``accepted`` is False no document of the batch
    was issued and every ``item.document`` is None.
    """

    accepted: bool
    items: tuple[BatchItemOutcome, ...]
    messages: tuple[ProcessingMessage, ...] = ()
    protocol: str | None = None

    @property
    def documents(self) -> list[IssuedDocument]:
        return [item.document for item in self.items if item.document is not None]


@dataclass(frozen=True)
class EventOutcome:
    access_key: str
    status: NfseStatus
    event: Event
    messages: tuple[ProcessingMessage, ...] = ()
    protocol: str | None = None


@dataclass(frozen=True)
class DraftHandle:
    draft_id: str
    name: str | None = None
    dps_id: str | None = None
    created_at: str | None = None
    xml: bytes | None = field(default=None, repr=False)
