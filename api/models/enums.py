# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Enumeration types for the approval workflow engine.
"""

from enum import Enum


class ApprovalStrategy(str, Enum):
    """Rule deciding how many approvals a request needs."""
    SIMPLE = "simple"
    MAJORITY = "majority"
    CUSTOM_MINIMUM = "custom_minimum"
    HIERARCHICAL_ESCALATION = "hierarchical_escalation"
    AUTO_APPROVAL_BY_ROLE = "auto_approval_by_role"


class ApprovalStatus(str, Enum):
    """Approval request workflow status enumeration."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class ExecutionStatus(str, Enum):
    """Execution state of the action behind an approval request."""
    NOT_EXECUTED = "not_executed"
    EXECUTING = "executing"
    EXECUTED = "executed"
    FAILED = "failed"
    SKIPPED = "skipped"


class HistoryAction(str, Enum):
    """Actions recorded in the request history."""
    CREATE = "create"
    APPROVE = "approve"
    REJECT = "reject"
    DELEGATE = "delegate"
    ESCALATE = "escalate"
    CANCEL = "cancel"
    AUTO_APPROVE = "auto_approve"
    EXPIRE = "expire"


class ExecutorKind(str, Enum):
    """Transport used to run an approved action."""
    AMQP = "amqp"
    HTTP = "http"


class AutoApprovalBasis(str, Enum):
    """Why a request was auto-approved."""
    ROLE = "role"
    ADMIN_CAPABILITY = "admin_capability"


class CriticalActionType(str, Enum):
    """Catalog of critical actions gated by the approval workflow."""
    CANCELAR_SOLICITACAO = "cancelar_solicitacao"
    SUSPENDER_BENEFICIO = "suspender_beneficio"
    BLOQUEAR_BENEFICIO = "bloquear_beneficio"
    DESBLOQUEAR_BENEFICIO = "desbloquear_beneficio"
    LIBERAR_BENEFICIO = "liberar_beneficio"
    CANCELAR_BENEFICIO = "cancelar_beneficio"
    INATIVAR_CIDADAO = "inativar_cidadao"
    REATIVAR_CIDADAO = "reativar_cidadao"
    EXCLUIR_CIDADAO = "excluir_cidadao"
    INATIVAR_USUARIO = "inativar_usuario"
    REATIVAR_USUARIO = "reativar_usuario"
    ALTERAR_PERMISSOES = "alterar_permissoes"
    EXCLUIR_DOCUMENTO = "excluir_documento"
    SUBSTITUIR_DOCUMENTO = "substituir_documento"
    ALTERAR_CONFIGURACAO_CRITICA = "alterar_configuracao_critica"


TERMINAL_STATUSES = (
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
    ApprovalStatus.CANCELLED,
    ApprovalStatus.EXPIRED,
)
