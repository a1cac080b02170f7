"""
Máquinas de estado das solicitações de compra e das ordens de serviço.

Cada máquina é uma tabela explícita ``(estado, evento) -> estado``.
Estados sem arestas de saída são terminais (absorventes). Alguns estados
de destino exigem dados complementares, gravados na mesma operação que a
mudança de status:

    Compra:  pending --approve--> approved --receive--> received
                |                     |
                +------cancel---------+----> cancelled

    OS:      open --start--> in_progress --complete--> completed
               |                 |
               +---complete------|-----------------> completed
               +---cancel--------+-----------------> cancelled

Este módulo não acessa o banco; ``fleet_manager.services`` aplica o
resultado de ``StateMachine.plan`` numa única atualização.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from fleet_manager.exceptions import IllegalTransitionError, ValidationError
from fleet_manager.models import PurchaseStatus, ServiceOrderStatus


class PurchaseEvent(str, Enum):
    APPROVE = "approve"
    RECEIVE = "receive"
    CANCEL = "cancel"


class ServiceOrderEvent(str, Enum):
    START = "start"
    COMPLETE = "complete"
    CANCEL = "cancel"


FIELD_LABELS = {
    "approved_by": "Aprovado por",
    "approval_date": "Data de aprovação",
    "receiver_name": "Nome do recebedor",
    "invoice_number": "Nota Fiscal",
    "delivery_date": "Data de recebimento",
    "validated_by": "Validado por",
    "validation_date": "Data de validação",
}


@dataclass(frozen=True)
class StateMachine:
    entity: str
    table: Mapping[Tuple[Enum, Enum], Enum]
    requirements: Mapping[Enum, Tuple[str, ...]]

    def fire(self, state: Enum, event: Enum) -> Enum:
        """Retorna o próximo estado ou levanta IllegalTransitionError."""
        try:
            return self.table[(state, event)]
        except KeyError:
            raise IllegalTransitionError(self.entity, state, event) from None

    def event_for(self, target: Enum) -> Optional[Enum]:
        for (_, event), result in self.table.items():
            if result == target:
                return event
        return None

    def allowed_targets(self, state: Enum) -> FrozenSet[Enum]:
        return frozenset(
            result for (source, _), result in self.table.items() if source == state
        )

    def is_terminal(self, state: Enum) -> bool:
        return not self.allowed_targets(state)

    def plan(
        self, current: Enum, requested: Enum, supplied: Mapping[str, Any]
    ) -> Optional[Dict[str, Any]]:
        """
        Valida a transição ``current -> requested`` e devolve os campos a
        gravar (status + dados complementares). Retorna None quando o
        destino é o próprio estado atual.

        Toda a validação ocorre antes de qualquer escrita.
        """
        if requested == current:
            return None

        event = self.event_for(requested)
        if event is None or (current, event) not in self.table:
            raise IllegalTransitionError(self.entity, current, requested)
        new_state = self.fire(current, event)

        updates: Dict[str, Any] = {"status": new_state}
        for field in self.requirements.get(new_state, ()):
            value = supplied.get(field)
            if isinstance(value, str):
                value = value.strip()
            if value is None or value == "":
                raise ValidationError(
                    field, f"{FIELD_LABELS.get(field, field)} é obrigatório"
                )
            updates[field] = value
        return updates


PURCHASE_WORKFLOW = StateMachine(
    entity="Solicitação de compra",
    table={
        (PurchaseStatus.PENDING, PurchaseEvent.APPROVE): PurchaseStatus.APPROVED,
        (PurchaseStatus.PENDING, PurchaseEvent.CANCEL): PurchaseStatus.CANCELLED,
        (PurchaseStatus.APPROVED, PurchaseEvent.RECEIVE): PurchaseStatus.RECEIVED,
        (PurchaseStatus.APPROVED, PurchaseEvent.CANCEL): PurchaseStatus.CANCELLED,
    },
    requirements={
        PurchaseStatus.APPROVED: ("approved_by", "approval_date"),
        PurchaseStatus.RECEIVED: ("receiver_name", "invoice_number", "delivery_date"),
    },
)

SERVICE_ORDER_WORKFLOW = StateMachine(
    entity="Ordem de serviço",
    table={
        (ServiceOrderStatus.OPEN, ServiceOrderEvent.START): ServiceOrderStatus.IN_PROGRESS,
        (ServiceOrderStatus.OPEN, ServiceOrderEvent.COMPLETE): ServiceOrderStatus.COMPLETED,
        (ServiceOrderStatus.OPEN, ServiceOrderEvent.CANCEL): ServiceOrderStatus.CANCELLED,
        (ServiceOrderStatus.IN_PROGRESS, ServiceOrderEvent.COMPLETE): ServiceOrderStatus.COMPLETED,
        (ServiceOrderStatus.IN_PROGRESS, ServiceOrderEvent.CANCEL): ServiceOrderStatus.CANCELLED,
    },
    requirements={
        ServiceOrderStatus.COMPLETED: ("validated_by", "validation_date"),
    },
)
