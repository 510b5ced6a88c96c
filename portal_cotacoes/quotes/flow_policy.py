from __future__ import annotations

from typing import Dict, List


PROCESS_STAGES: List[Dict[str, str]] = [
    {"key": "cotacao", "label": "Cotacao"},
    {"key": "visita", "label": "Visita tecnica"},
    {"key": "proposta", "label": "Proposta"},
    {"key": "decisao", "label": "Decisao"},
]


ACTION_LABELS: Dict[str, str] = {
    "edit_quote": "Editar cotacao",
    "send_quote": "Enviar aos fornecedores",
    "delete_quote": "Excluir cotacao",
    "view_responses": "Acompanhar propostas",
    "review_responses": "Analisar propostas",
    "view_history": "Ver historico",
    "view_quote": "Ver cotacao",
    "save_draft": "Salvar rascunho",
    "send_proposal": "Enviar proposta",
    "view_proposal": "Ver proposta",
    "schedule_visit": "Agendar visita",
    "reschedule_visit": "Reagendar visita",
    "confirm_visit": "Confirmar visita",
}


FLOW_POLICY: Dict[str, Dict[str, Dict[str, object]]] = {
    "cotacao": {
        "draft": {
            "allowed_actions": ["edit_quote", "send_quote", "delete_quote"],
            "primary_action": "send_quote",
        },
        "sent": {
            "allowed_actions": ["view_responses", "delete_quote"],
            "primary_action": "view_responses",
        },
        "receiving": {
            "allowed_actions": ["view_responses", "review_responses"],
            "primary_action": "review_responses",
        },
        "received": {
            "allowed_actions": ["view_responses", "review_responses"],
            "primary_action": "review_responses",
        },
        "under_review": {
            "allowed_actions": ["view_responses", "review_responses"],
            "primary_action": "review_responses",
        },
        "pending_approval": {
            "allowed_actions": ["view_responses", "view_history"],
            "primary_action": "view_responses",
        },
        "approved": {
            "allowed_actions": ["view_responses", "view_history"],
            "primary_action": "view_history",
        },
        "paid": {
            "allowed_actions": ["view_history"],
            "primary_action": "view_history",
        },
        "delivering": {
            "allowed_actions": ["view_history"],
            "primary_action": "view_history",
        },
        "finalized": {
            "allowed_actions": ["view_history"],
            "primary_action": "view_history",
        },
        "expired": {
            "allowed_actions": ["view_history", "delete_quote"],
            "primary_action": "view_history",
        },
    },
    "fornecedor": {
        "pending": {
            "allowed_actions": ["view_quote", "save_draft", "send_proposal", "schedule_visit"],
            "primary_action": "send_proposal",
        },
        "proposal_sent": {
            "allowed_actions": ["view_quote", "view_proposal"],
            "primary_action": "view_proposal",
        },
        "approved": {
            "allowed_actions": ["view_quote", "view_proposal", "view_history"],
            "primary_action": "view_history",
        },
        "rejected": {
            "allowed_actions": ["view_quote", "view_proposal", "view_history"],
            "primary_action": "view_history",
        },
        "expired": {
            "allowed_actions": ["view_quote", "view_history"],
            "primary_action": "view_history",
        },
    },
    "visita": {
        "none": {
            "allowed_actions": ["schedule_visit"],
            "primary_action": "schedule_visit",
        },
        "scheduled": {
            "allowed_actions": ["confirm_visit"],
            "primary_action": "confirm_visit",
        },
        "overdue": {
            "allowed_actions": ["reschedule_visit", "schedule_visit"],
            "primary_action": "reschedule_visit",
        },
        "confirmed": {
            "allowed_actions": ["view_history"],
            "primary_action": "view_history",
        },
    },
}


def _fallback_policy() -> Dict[str, object]:
    return {"allowed_actions": [], "primary_action": None}


def status_policy(stage: str, status: str | None) -> Dict[str, object]:
    if not status:
        return _fallback_policy()
    return FLOW_POLICY.get(stage, {}).get(str(status), _fallback_policy())


def allowed_actions(stage: str, status: str | None) -> List[str]:
    actions = status_policy(stage, status).get("allowed_actions") or []
    if not isinstance(actions, list):
        return []
    return [str(action) for action in actions]


def primary_action(stage: str, status: str | None) -> str | None:
    action = status_policy(stage, status).get("primary_action")
    if not action:
        return None
    return str(action)


def action_allowed(stage: str, status: str | None, action: str) -> bool:
    if not action:
        return False
    return action in set(allowed_actions(stage, status))


def flow_meta(stage: str, status: str | None) -> Dict[str, object]:
    return {
        "stage": stage,
        "status": status,
        "allowed_actions": allowed_actions(stage, status),
        "primary_action": primary_action(stage, status),
    }


def filter_actions(meta: Dict[str, object], blocked: set[str]) -> Dict[str, object]:
    allowed = [action for action in list(meta.get("allowed_actions") or []) if action not in blocked]
    primary = meta.get("primary_action")
    if primary not in allowed:
        primary = allowed[0] if allowed else None
    return {"allowed_actions": allowed, "primary_action": primary}


def supplier_flow_meta(
    supplier_status: str,
    *,
    quote_locked: bool,
    requires_visit: bool,
    visit_state: str,
) -> Dict[str, object]:
    """Supplier actions for one quote, narrowed by lock and visit state."""
    meta = flow_meta("fornecedor", supplier_status)
    blocked: set[str] = set()
    if quote_locked:
        blocked |= {"save_draft", "send_proposal", "schedule_visit"}
    if not requires_visit:
        blocked.add("schedule_visit")
    else:
        if visit_state != "confirmed":
            blocked.add("send_proposal")
        if not action_allowed("visita", visit_state, "schedule_visit"):
            blocked.add("schedule_visit")
    meta.update(filter_actions(meta, blocked))
    return meta


def build_process_steps(current_stage: str) -> List[Dict[str, object]]:
    keys = [stage["key"] for stage in PROCESS_STAGES]
    current_idx = keys.index(current_stage) if current_stage in keys else 0
    return [
        {
            "key": stage["key"],
            "label": stage["label"],
            "state": "completed" if idx < current_idx else ("current" if idx == current_idx else "future"),
        }
        for idx, stage in enumerate(PROCESS_STAGES)
    ]


def stage_for_quote_status(status: str | None) -> str:
    mapping = {
        "draft": "cotacao",
        "sent": "proposta",
        "receiving": "proposta",
        "received": "decisao",
        "under_review": "decisao",
        "pending_approval": "decisao",
        "approved": "decisao",
        "paid": "decisao",
        "delivering": "decisao",
        "finalized": "decisao",
        "expired": "cotacao",
    }
    return mapping.get(str(status or "").strip(), "cotacao")


def frontend_bundle() -> Dict[str, object]:
    return {
        "stages": PROCESS_STAGES,
        "policy": FLOW_POLICY,
        "action_labels": ACTION_LABELS,
    }
