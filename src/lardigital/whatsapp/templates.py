"""WhatsApp reply templates.

Every outbound reply is one of these keys. Templates are static Portuguese
text with named placeholders; `render` refuses params a template does not
declare so a stray field can never leak into a chat.
"""

from typing import Any

TEMPLATES: dict[str, dict[str, Any]] = {
    # Attendance
    "entrada_registrada": {
        "text": "✅ Entrada registrada às {hora}. Bom trabalho, {nome}!",
        "allowed_params": ["hora", "nome"],
    },
    "saida_registrada": {
        "text": "✅ Saída registrada às {hora}. Até logo, {nome}!",
        "allowed_params": ["hora", "nome"],
    },
    "saida_sem_entrada": {
        "text": (
            "⚠️ Saída registrada às {hora}, mas não encontrei sua entrada de hoje. "
            "A administração vai conferir."
        ),
        "allowed_params": ["hora"],
    },
    "saida_almoco_registrada": {
        "text": "🍽️ Saída para almoço registrada às {hora}. Bom almoço!",
        "allowed_params": ["hora"],
    },
    "retorno_almoco_registrado": {
        "text": "✅ Retorno do almoço registrado às {hora}.",
        "allowed_params": ["hora"],
    },
    "ponto_ja_registrado": {
        "text": "ℹ️ {evento} de hoje já está registrado(a). Nada foi alterado.",
        "allowed_params": ["evento"],
    },
    "confirmar_ponto": {
        "text": "🕐 Registrar {evento} às {hora}? Responda *sim* ou *não*.",
        "allowed_params": ["evento", "hora"],
    },
    # Records
    "confirmar_documento": {
        "text": "📄 Recebi um documento ({tipo}). Posso salvar? Responda *sim* ou *não*.",
        "allowed_params": ["tipo"],
    },
    "confirmar_entrega": {
        "text": "📦 Parece uma entrega{detalhe}. Registrar? Responda *sim* ou *não*.",
        "allowed_params": ["detalhe"],
    },
    "confirmar_nota": {
        "text": (
            "🧾 Nota fiscal{detalhe}. Registrar a despesa e atualizar a lista de "
            "compras? Responda *sim* ou *não*."
        ),
        "allowed_params": ["detalhe"],
    },
    "confirmar_comprovante": {
        "text": "🧾 Comprovante{detalhe}. Registrar a despesa? Responda *sim* ou *não*.",
        "allowed_params": ["detalhe"],
    },
    "documento_salvo": {
        "text": "📄 Documento ({tipo}) salvo{vinculo}.",
        "allowed_params": ["tipo", "vinculo"],
    },
    "entrega_registrada": {
        "text": "📦 Entrega registrada. Obrigado!",
        "allowed_params": [],
    },
    "nota_registrada": {
        "text": (
            "🧾 Nota fiscal registrada ({itens} item(ns)). "
            "{comprados} item(ns) da lista de compras marcado(s) como comprado(s)."
        ),
        "allowed_params": ["itens", "comprados"],
    },
    "comprovante_registrado": {
        "text": "🧾 Comprovante registrado. A despesa ficou pendente de aprovação.",
        "allowed_params": [],
    },
    # Suggestions
    "sugestao_pergunta": {
        "text": (
            "💡 Anotei sua sugestão. Quer que eu transforme em tarefa? "
            "Responda *sim* ou *não*."
        ),
        "allowed_params": [],
    },
    "sugestao_registrada": {
        "text": "💡 Anotei sua sugestão. Obrigado!",
        "allowed_params": [],
    },
    "tarefa_criada": {
        "text": "📝 Tarefa criada: {titulo}",
        "allowed_params": ["titulo"],
    },
    "sugestao_arquivada": {
        "text": "👍 Ok, a sugestão ficou só anotada.",
        "allowed_params": [],
    },
    # Generic
    "cancelado": {
        "text": "👍 Ok, cancelado. Nada foi registrado.",
        "allowed_params": [],
    },
    "remetente_desconhecido": {
        "text": (
            "Não reconheci seu número. Peça para a administração cadastrar seu "
            "telefone para eu registrar {assunto}."
        ),
        "allowed_params": ["assunto"],
    },
    "limite_audio": {
        "text": (
            "🎙️ O limite de áudios transcritos nesta hora foi atingido. "
            "Por favor, envie sua mensagem por texto."
        ),
        "allowed_params": [],
    },
    "limite_imagem": {
        "text": (
            "📷 O limite de imagens analisadas nesta hora foi atingido. "
            "Tente de novo mais tarde ou descreva por texto."
        ),
        "allowed_params": [],
    },
    "audio_nao_entendido": {
        "text": "🎙️ Não consegui entender o áudio. Pode escrever, por favor?",
        "allowed_params": [],
    },
    "erro_registro": {
        "text": "⚠️ Tive um problema para registrar isso. Tente novamente em instantes.",
        "allowed_params": [],
    },
    "mensagem_teste": {
        "text": "✅ Mensagem de teste do Lar Digital. A integração está funcionando.",
        "allowed_params": [],
    },
}

# Names used inside replies for each punch kind
EVENT_LABELS: dict[str, str] = {
    "entrada": "Entrada",
    "saida": "Saída",
    "saida_almoco": "Saída para almoço",
    "retorno_almoco": "Retorno do almoço",
}

# What an unknown sender was trying to register
SUBJECT_LABELS: dict[str, str] = {
    "document": "documentos",
    "delivery": "entregas",
    "invoice": "notas fiscais",
    "receipt": "comprovantes",
}


def render(template_key: str, params: dict[str, Any]) -> str:
    """Render template with params. Validates allowed_params.

    Args:
        template_key: Template identifier.
        params: Parameters to interpolate (must be in allowed_params).

    Returns:
        Rendered text string.

    Raises:
        ValueError: If template_key unknown or params contains disallowed keys.
    """
    if template_key not in TEMPLATES:
        raise ValueError(f"Unknown template: {template_key}")

    template = TEMPLATES[template_key]
    extras = set(params) - set(template["allowed_params"])
    if extras:
        raise ValueError(f"Disallowed params for {template_key}: {extras}")

    return template["text"].format(**params)
