"""
Exceções tipadas do back-office de frota.

Toda falha de regra de negócio tem sua própria classe, com um ``code``
estável (seguro para a API) e os dados estruturados do erro, para que a
camada web trate por tipo e não por texto de mensagem.

    FleetError
    +-- ValidationError           entrada ausente ou inválida
    +-- IllegalTransitionError    mudança de status fora da tabela
    +-- ConcurrencyConflictError  versão do registro mudou
    +-- NotFoundError             registro inexistente
    +-- StoreError                falha do banco de dados
"""

from typing import Any, Optional


class FleetError(Exception):
    code: str = "FLEET_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(FleetError):
    code = "VALIDATION_ERROR"

    def __init__(self, field: Optional[str], message: str):
        self.field = field
        super().__init__(message)


class IllegalTransitionError(FleetError):
    code = "ILLEGAL_TRANSITION"

    def __init__(self, entity: str, current: Any, requested: Any):
        self.entity = entity
        self.current = current
        self.requested = requested
        super().__init__(
            f"Transição inválida para {entity}: "
            f"{_status_value(current)} -> {_status_value(requested)}"
        )


class ConcurrencyConflictError(FleetError):
    code = "CONCURRENCY_CONFLICT"

    def __init__(
        self,
        entity: str,
        record_id: int,
        expected_version: int,
        actual_version: Optional[int] = None,
    ):
        self.entity = entity
        self.record_id = record_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"{entity} {record_id} foi alterado por outra operação "
            f"(versão esperada {expected_version}, atual {actual_version})"
        )


class NotFoundError(FleetError):
    code = "NOT_FOUND"

    def __init__(self, entity: str, record_id: Any):
        self.entity = entity
        self.record_id = record_id
        super().__init__(f"{entity} {record_id} não encontrado(a)")


class StoreError(FleetError):
    code = "STORE_ERROR"


def _status_value(status: Any) -> str:
    return getattr(status, "value", str(status))
