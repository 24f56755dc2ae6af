"""Intent classifier backed by Anthropic's Messages API.

The adapter never raises for bad model output. Parsing runs in three steps:

1. strict: the response (or the first {...} block in it) validates against
   IntentPayload -> parse_mode "structured";
2. permissive: `kind`/`confidence` scraped from near-miss text with regexes
   -> parse_mode "fallback";
3. nothing recoverable -> ClassifiedIntent.empty().

Only transport or service failures raise ClassifierError; callers degrade
those to an empty intent as well.
"""

from __future__ import annotations

import base64
import re
from typing import Any, Sequence

import anthropic
from anthropic import AsyncAnthropic
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from lardigital.domain.intents import INTENT_KINDS, ClassifiedIntent, IntentKind
from lardigital.domain.text import normalize_hhmm
from lardigital.infra.settings import ClassifierConfig
from lardigital.observability.logging import get_logger
from lardigital.observability.redaction import safe_log_context

logger = get_logger(__name__)

SYSTEM_PROMPT = """\
Você classifica mensagens de WhatsApp enviadas por funcionários de uma casa.
Responda APENAS com um objeto JSON, sem texto extra, no formato:
{"kind": "...", "confidence": 0-100, "explicit_time": "HH:MM" ou null,
 "summary": "resumo curto", "extracted_data": {...}}

Valores de kind:
- entrada: chegada ao trabalho ("bom dia", "cheguei")
- saida: fim do expediente ("tchau", "estou indo")
- saida_almoco / retorno_almoco: pausa e volta do almoço
- document: foto de documento (crlv, rg, cpf, cnh, comprovante_endereco,
  apolice_seguro, contrato, holerite, outro). extracted_data: tipo, nome, cpf,
  placa, renavam, chassi, marca, modelo, ano
- delivery: foto de encomenda/etiqueta. extracted_data: destinatario,
  remetente, transportadora, descricao
- invoice: nota fiscal de compra. extracted_data: estabelecimento, data,
  valor_total, categoria, itens [{nome, quantidade, preco}]
- receipt: comprovante/recibo de gasto. extracted_data: estabelecimento,
  data, valor, descricao, categoria
- suggestion: pedido, reclamação ou ideia de melhoria para a casa
- none: conversa sem ação

explicit_time só quando a mensagem cita um horário ("cheguei às 8:30").
"""

_JSON_BLOCK = re.compile(r"\{.*\}", re.DOTALL)
_KIND_FIELD = re.compile(r"[\"']?(?:kind|intent)[\"']?\s*[:=]\s*[\"']?([a-z_]+)", re.I)
# extracted_data also carries "tipo" (document type), so it only counts
# when no kind/intent key is present
_TIPO_FIELD = re.compile(r"[\"']?tipo[\"']?\s*[:=]\s*[\"']?([a-z_]+)", re.I)
_CONFIDENCE_FIELD = re.compile(r"[\"']?(?:confidence|confianca)[\"']?\s*[:=]\s*[\"']?(\d{1,3})", re.I)
_TIME_FIELD = re.compile(
    r"[\"']?(?:explicit_time|horario)[\"']?\s*[:=]\s*[\"']?(\d{1,2}[:h]\d{2})", re.I
)


class ClassifierError(Exception):
    """Classifier service unreachable or returned an API error."""


class IntentPayload(BaseModel):
    """Expected JSON object from the model."""

    model_config = ConfigDict(extra="ignore")

    kind: IntentKind
    confidence: int = Field(ge=0, le=100)
    explicit_time: str | None = None
    summary: str | None = None
    extracted_data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("explicit_time")
    @classmethod
    def _normalize_time(cls, value: str | None) -> str | None:
        return normalize_hhmm(value)

    @field_validator("extracted_data", mode="before")
    @classmethod
    def _null_data(cls, value: Any) -> Any:
        return value or {}


def _structured(raw: str) -> ClassifiedIntent | None:
    candidates = [raw.strip()]
    block = _JSON_BLOCK.search(raw)
    if block and block.group(0) != candidates[0]:
        candidates.append(block.group(0))

    for candidate in candidates:
        try:
            payload = IntentPayload.model_validate_json(candidate)
        except ValidationError:
            continue
        return ClassifiedIntent(
            kind=payload.kind,
            confidence=payload.confidence,
            explicit_time=payload.explicit_time,
            extracted_data=payload.extracted_data,
            parse_mode="structured",
            summary=payload.summary,
        )
    return None


def _permissive(raw: str) -> ClassifiedIntent | None:
    kind_match = _KIND_FIELD.search(raw) or _TIPO_FIELD.search(raw)
    confidence_match = _CONFIDENCE_FIELD.search(raw)
    if not kind_match or not confidence_match:
        return None
    kind = kind_match.group(1).lower()
    if kind not in INTENT_KINDS:
        return None
    time_match = _TIME_FIELD.search(raw)
    return ClassifiedIntent(
        kind=kind,  # type: ignore[arg-type]
        confidence=min(int(confidence_match.group(1)), 100),
        explicit_time=normalize_hhmm(time_match.group(1)) if time_match else None,
        parse_mode="fallback",
    )


def parse_classifier_output(raw: str | None) -> ClassifiedIntent:
    """Turn raw model text into a ClassifiedIntent. Never raises."""
    if not raw or not raw.strip():
        return ClassifiedIntent.empty()
    return _structured(raw) or _permissive(raw) or ClassifiedIntent.empty()


def build_user_prompt(
    *,
    text: str | None,
    media_kind: str | None,
    sender_context: str | None,
    known_actor_names: Sequence[str],
    conversation_context: str | None,
) -> str:
    parts = []
    if sender_context:
        parts.append(f"Remetente: {sender_context}")
    if known_actor_names:
        parts.append("Funcionários cadastrados: " + ", ".join(known_actor_names))
    if conversation_context:
        parts.append("Conversa recente:\n" + conversation_context)
    if media_kind:
        parts.append(f"Mídia anexada: {media_kind}")
    parts.append("Mensagem: " + (text or "(sem texto)"))
    return "\n\n".join(parts)


class IntentClassifier:
    """Async classifier client.

    Args:
        config: Model, key and token limits.
        client: Optional pre-built AsyncAnthropic (tests inject a mock).
    """

    def __init__(self, config: ClassifierConfig, client: AsyncAnthropic | None = None) -> None:
        self._config = config
        self._client = client or AsyncAnthropic(api_key=config.api_key or None)

    async def classify(
        self,
        text: str | None,
        media_kind: str | None,
        sender_context: str | None,
        known_actor_names: Sequence[str],
        conversation_context: str | None,
        image: bytes | None = None,
        image_mime: str | None = None,
    ) -> ClassifiedIntent:
        """Classify one message.

        Raises:
            ClassifierError: On API/transport failure.
        """
        prompt = build_user_prompt(
            text=text,
            media_kind=media_kind,
            sender_context=sender_context,
            known_actor_names=known_actor_names,
            conversation_context=conversation_context,
        )
        content: list[dict[str, Any]] = []
        if image:
            content.append(
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": (image_mime or "image/jpeg").split(";", 1)[0],
                        "data": base64.b64encode(image).decode("ascii"),
                    },
                }
            )
        content.append({"type": "text", "text": prompt})

        try:
            response = await self._client.messages.create(
                model=self._config.model,
                system=SYSTEM_PROMPT,
                max_tokens=self._config.max_tokens,
                messages=[{"role": "user", "content": content}],
                timeout=self._config.timeout_seconds,
            )
        except anthropic.APIConnectionError as e:
            raise ClassifierError(f"classifier unreachable: {e}") from e
        except anthropic.APIError as e:
            raise ClassifierError(
                f"classifier error (status={getattr(e, 'status_code', None)})"
            ) from e

        raw = "".join(
            getattr(block, "text", "") for block in response.content if block.type == "text"
        )
        intent = parse_classifier_output(raw)
        logger.info(
            "message classified",
            extra={
                "extra_fields": safe_log_context(
                    kind=intent.kind,
                    confidence=intent.confidence,
                    parse_mode=intent.parse_mode,
                    has_image=bool(image),
                    response_len=len(raw),
                )
            },
        )
        if intent.parse_mode == "fallback":
            logger.warning(
                "classifier output needed fallback parsing",
                extra={"extra_fields": safe_log_context(kind=intent.kind)},
            )
        return intent

