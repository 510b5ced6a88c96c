from __future__ import annotations

from typing import Dict, List

from portal_cotacoes.quotes.flow_policy import frontend_bundle as flow_frontend_bundle


FRIENDLY_TERMS: Dict[str, str] = {
    "app_name": "Portal de Cotacoes",
    "quote": "Cotacao",
    "quote_response": "Proposta",
    "visit": "Visita tecnica",
    "supplier": "Fornecedor",
    "client": "Cliente",
    "workspace": "Workspace",
}


STATUS_GROUPS: Dict[str, List[Dict[str, str]]] = {
    "cotacao": [
        {"key": "draft", "label": "Rascunho", "description": "Cotacao em preparacao pelo cliente."},
        {"key": "sent", "label": "Enviada", "description": "Cotacao enviada aos fornecedores."},
        {"key": "receiving", "label": "Recebendo", "description": "Fornecedores enviando propostas."},
        {"key": "received", "label": "Recebida", "description": "Janela de propostas encerrada."},
        {"key": "under_review", "label": "Em analise", "description": "Cliente analisando as propostas."},
        {
            "key": "pending_approval",
            "label": "Aguardando aprovacao",
            "description": "Proposta escolhida aguardando aprovacao.",
        },
        {"key": "approved", "label": "Aprovada", "description": "Proposta aprovada pelo cliente."},
        {"key": "paid", "label": "Paga", "description": "Pagamento confirmado."},
        {"key": "delivering", "label": "Em entrega", "description": "Fornecedor executando a entrega."},
        {"key": "finalized", "label": "Finalizada", "description": "Cotacao encerrada com entrega."},
        {"key": "expired", "label": "Expirada", "description": "Prazo encerrado sem propostas."},
    ],
    "proposta": [
        {"key": "draft", "label": "Rascunho", "description": "Proposta salva e ainda nao enviada."},
        {"key": "pending", "label": "Pendente", "description": "Proposta aguardando envio."},
        {"key": "sent", "label": "Enviada", "description": "Proposta enviada ao cliente."},
        {"key": "approved", "label": "Aprovada", "description": "Proposta aprovada pelo cliente."},
        {"key": "rejected", "label": "Recusada", "description": "Proposta recusada pelo cliente."},
        {"key": "expired", "label": "Expirada", "description": "Prazo encerrado antes do envio."},
    ],
    "fornecedor": [
        {"key": "pending", "label": "Aguardando proposta", "description": "Cotacao disponivel para resposta."},
        {"key": "proposal_sent", "label": "Proposta enviada", "description": "Sua proposta foi enviada."},
        {"key": "approved", "label": "Aprovada", "description": "Sua proposta foi aprovada."},
        {"key": "rejected", "label": "Recusada", "description": "Sua proposta nao foi escolhida."},
        {"key": "expired", "label": "Expirada", "description": "Prazo de resposta encerrado."},
    ],
    "visita": [
        {"key": "none", "label": "Sem visita", "description": "Nenhuma visita agendada."},
        {"key": "scheduled", "label": "Agendada", "description": "Visita tecnica agendada."},
        {"key": "confirmed", "label": "Confirmada", "description": "Visita tecnica realizada e confirmada."},
        {"key": "overdue", "label": "Atrasada", "description": "Data da visita passou sem confirmacao."},
    ],
}


MESSAGES: Dict[str, Dict[str, str]] = {
    "success": {
        "quote_created": "Cotacao criada.",
        "quote_sent": "Cotacao enviada aos fornecedores.",
        "quote_deleted": "Cotacao excluida.",
        "draft_saved": "Sua proposta foi salva como rascunho.",
        "proposal_sent": "Sua proposta foi enviada para o cliente.",
        "proposal_sent_partial": "Proposta enviada. O status da cotacao sera atualizado em instantes.",
        "visit_scheduled": "Visita tecnica agendada.",
        "visit_rescheduled": "Visita tecnica reagendada.",
        "visit_confirmed": "Visita tecnica confirmada.",
    },
    "error": {
        "action_invalid": "Acao invalida.",
        "action_not_allowed_for_status": "Acao nao permitida para o status atual.",
        "client_id_required": "Informe o cliente da cotacao.",
        "client_not_found": "Cliente nao encontrado.",
        "deadline_invalid": "Prazo informado e invalido.",
        "items_required": "Adicione pelo menos um item a proposta.",
        "not_found": "Registro nao encontrado.",
        "permission_denied": "Voce nao possui permissao para executar esta acao.",
        "proposal_already_sent": "Proposta ja enviada para esta cotacao.",
        "proposal_locked": "Proposta nao pode mais ser alterada.",
        "quote_has_responses": "Cotacao possui propostas e nao pode ser excluida.",
        "quote_items_required": "Adicione pelo menos um item valido a cotacao.",
        "quote_locked": "Cotacao nao aceita novas propostas neste status.",
        "quote_not_open": "Cotacao ainda nao foi enviada aos fornecedores ou ja expirou.",
        "quote_not_found": "Cotacao nao encontrada.",
        "quote_not_draft": "Somente cotacoes em rascunho podem ser enviadas.",
        "scheduled_date_invalid": "Data da visita invalida.",
        "status_invalid": "Status informado e invalido para esta etapa.",
        "supplier_id_invalid": "Fornecedor informado e invalido.",
        "supplier_not_found": "Fornecedor nao encontrado.",
        "supplier_required": "Fornecedor nao identificado para este usuario.",
        "supplier_scope_invalid": "Escopo de fornecedores invalido.",
        "title_required": "Informe o titulo da cotacao.",
        "unexpected_error": "Nao foi possivel concluir a operacao. Tente novamente em instantes.",
        "valid_items_required": "Preencha pelo menos um item com produto, quantidade e preco.",
        "visit_already_confirmed": "Visita tecnica ja confirmada para esta cotacao.",
        "visit_already_scheduled": "Ja existe uma visita tecnica agendada para esta cotacao.",
        "visit_confirmation_required": (
            "Voce precisa agendar e confirmar a visita tecnica antes de enviar a proposta."
        ),
        "visit_not_found": "Visita tecnica nao encontrada.",
        "visit_not_required": "Esta cotacao nao exige visita tecnica.",
        "visit_transition_invalid": "Transicao de visita invalida para o status atual.",
    },
    "warning": {
        "quote_status_not_advanced": "Proposta registrada, mas o status da cotacao nao foi atualizado.",
    },
}


def status_keys_for_group(group: str) -> List[str]:
    return [item["key"] for item in STATUS_GROUPS.get(group, [])]


def status_label(group: str, key: str | None) -> str:
    for item in STATUS_GROUPS.get(group, []):
        if item["key"] == key:
            return item["label"]
    return str(key or "")


def get_message(category: str, key: str, default: str | None = None) -> str:
    message = MESSAGES.get(category, {}).get(key)
    if message:
        return message
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None) -> str:
    return get_message("success", key, default)


def warning_message(key: str, default: str | None = None) -> str:
    return get_message("warning", key, default)


def frontend_bundle() -> Dict[str, object]:
    return {
        "terms": FRIENDLY_TERMS,
        "status_groups": STATUS_GROUPS,
        "messages": MESSAGES,
        "flow": flow_frontend_bundle(),
    }
