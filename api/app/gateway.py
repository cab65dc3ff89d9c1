"""
Persistence gateway contract.

The lifecycle engines only talk to storage through this interface: record
CRUD over named collections, a small declarative filter vocabulary, joined
profile selection, and opaque remote procedures. ``app.repo.SqlGateway`` is
the SQLAlchemy implementation; tests run the same class over SQLite.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol, Sequence, Union


@dataclass(frozen=True)
class Eq:
    field: str
    value: Any


@dataclass(frozen=True)
class Neq:
    field: str
    value: Any


@dataclass(frozen=True)
class In:
    field: str
    values: tuple[Any, ...]

    def __init__(self, field: str, values: Iterable[Any]) -> None:
        object.__setattr__(self, "field", field)
        object.__setattr__(self, "values", tuple(values))


@dataclass(frozen=True)
class Lt:
    field: str
    value: Any


@dataclass(frozen=True)
class Lte:
    field: str
    value: Any


@dataclass(frozen=True)
class Gt:
    field: str
    value: Any


@dataclass(frozen=True)
class Gte:
    field: str
    value: Any


@dataclass(frozen=True)
class IsNull:
    field: str
    is_null: bool = True


@dataclass(frozen=True)
class AnyOf:
    """OR-group. Members may themselves be ``AllOf`` groups."""

    predicates: tuple["Predicate", ...]

    def __init__(self, *predicates: "Predicate") -> None:
        object.__setattr__(self, "predicates", tuple(predicates))


@dataclass(frozen=True)
class AllOf:
    predicates: tuple["Predicate", ...]

    def __init__(self, *predicates: "Predicate") -> None:
        object.__setattr__(self, "predicates", tuple(predicates))


Predicate = Union[Eq, Neq, In, Lt, Lte, Gt, Gte, IsNull, AnyOf, AllOf]


@dataclass(frozen=True)
class Embed:
    """Join a related record inline: ``alias`` <- ``collection`` where ``collection.id == row[foreign_key]``."""

    alias: str
    foreign_key: str
    collection: str = "profiles"
    columns: tuple[str, ...] = field(default_factory=tuple)


def pair_filter(user_a: str, user_b: str) -> AnyOf:
    """Either storage order of an unordered user pair."""
    return AnyOf(
        AllOf(Eq("user1_id", user_a), Eq("user2_id", user_b)),
        AllOf(Eq("user1_id", user_b), Eq("user2_id", user_a)),
    )


def participant_filter(user_id: str) -> AnyOf:
    return AnyOf(Eq("user1_id", user_id), Eq("user2_id", user_id))


class PersistenceGateway(Protocol):
    def select(
        self,
        collection: str,
        where: Sequence[Predicate] = (),
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        embed: Sequence[Embed] = (),
    ) -> list[dict[str, Any]]: ...

    def insert(self, collection: str, record: dict[str, Any]) -> dict[str, Any]: ...

    def update(self, collection: str, where: Sequence[Predicate], patch: dict[str, Any]) -> list[dict[str, Any]]: ...

    def upsert(self, collection: str, record: dict[str, Any]) -> dict[str, Any]: ...

    def rpc(self, name: str, **params: Any) -> Any: ...
