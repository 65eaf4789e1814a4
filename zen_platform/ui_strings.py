from __future__ import annotations

from typing import Dict


COLLECTION_LABELS: Dict[str, str] = {
    "plans": "Planos",
    "pipeline_stages": "Etapas do pipeline",
    "catalog_sections": "Secoes do catalogo",
    "catalog_categories": "Categorias do catalogo",
    "catalog_services": "Servicos do catalogo",
    "personnel_categories": "Categorias de pessoal",
    "personnel": "Pessoal",
}


MESSAGES: Dict[str, Dict[str, str]] = {
    "success": {
        "order_normalized": "Ordem normalizada para {count} itens ativos.",
        "order_updated": "Ordem atualizada para {count} itens.",
        "item_removed": "Item removido. Ordem normalizada para {count} itens.",
        "item_created": "Item criado no final da lista.",
    },
    "error": {
        "action_invalid": "Acao invalida para esta operacao.",
        "auth_required": "Autenticacao necessaria.",
        "collection_not_found": "Lista ordenavel nao encontrada.",
        "invalid_rank": "Posicao informada fora do intervalo da lista.",
        "item_already_exists": "Ja existe um item com este identificador.",
        "item_not_found": "Item nao encontrado.",
        "parent_not_found": "Grupo de destino nao encontrado.",
        "parent_required": "Informe o grupo da lista (parent_id).",
        "permission_denied": "Voce nao tem permissao para esta acao.",
        "persistence_error": "Nao foi possivel salvar a nova ordem. Nenhuma alteracao foi aplicada.",
        "rank_conflict": "A lista foi alterada por outra operacao. Atualize e tente novamente.",
        "rank_list_invalid": "A lista de posicoes informada e invalida.",
        "rate_limit_exceeded": "Muitas requisicoes. Tente novamente em instantes.",
        "unexpected_error": "Nao foi possivel concluir a operacao. Tente novamente em instantes.",
        "validation_error": "Dados de entrada invalidos.",
    },
}


def collection_label(key: str, default: str | None = None) -> str:
    label = COLLECTION_LABELS.get(str(key or "").strip())
    if label:
        return label
    if default is not None:
        return default
    return key


def get_message(category: str, key: str, default: str | None = None) -> str:
    message = MESSAGES.get(category, {}).get(key)
    if message:
        return message
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None, **values) -> str:
    message = get_message("success", key, default)
    if values:
        return message.format(**values)
    return message
