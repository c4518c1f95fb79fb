from dataclasses import dataclass
from typing import ClassVar, List


@dataclass
class DomainError(Exception):
    detail: str
    title: str = "Domain Error"
    type: str = "https://bikawo.com/problems/domain-error"
    errors: List[dict] | None = None

    status_code: ClassVar[int] = 400

    def __str__(self) -> str:
        return self.detail


@dataclass
class InvalidArgumentError(DomainError):
    title: str = "Invalid Argument"
    type: str = "https://bikawo.com/problems/invalid-argument"

    status_code: ClassVar[int] = 422


@dataclass
class NotFoundError(DomainError):
    title: str = "Not Found"
    type: str = "https://bikawo.com/problems/not-found"

    status_code: ClassVar[int] = 404


@dataclass
class ConflictError(DomainError):
    title: str = "Conflict"
    type: str = "https://bikawo.com/problems/conflict"

    status_code: ClassVar[int] = 409


@dataclass
class GatewayError(DomainError):
    title: str = "Payment Gateway Error"
    type: str = "https://bikawo.com/problems/gateway-error"

    status_code: ClassVar[int] = 502


@dataclass
class PersistenceError(DomainError):
    title: str = "Persistence Error"
    type: str = "https://bikawo.com/problems/persistence-error"

    status_code: ClassVar[int] = 503
