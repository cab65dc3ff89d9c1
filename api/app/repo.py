import logging
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Any, Callable, Iterator, Sequence

from sqlalchemy import and_, bindparam, or_, select, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from app import models  # noqa: F401  registers tables on Base.metadata
from app.config import DAILY_SWIPE_LIMIT, SWIPE_LIMIT_REACHED
from app.database import Base, SessionLocal
from app.gateway import AllOf, AnyOf, Embed, Eq, Gt, Gte, In, IsNull, Lt, Lte, Neq, Predicate
from app.realtime import INSERT, UPDATE, RealtimeEvent, RealtimeHub
from app.services.errors import ConflictError, TransientError

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _today_utc() -> date:
    return _now_utc().date()


def _normalize_value(value: Any) -> Any:
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _normalize_row(row: Any) -> dict[str, Any]:
    return {k: _normalize_value(v) for k, v in dict(row).items()}


class SqlGateway:
    """Persistence gateway over the ``models.py`` tables.

    Writes are single statements with RETURNING so the caller sees exactly the
    rows it changed; every committed write is published to ``hub``.
    """

    def __init__(self, session_factory: Callable[[], Any] = SessionLocal, hub: RealtimeHub | None = None) -> None:
        self.session_factory = session_factory
        self.hub = hub
        self._rpcs: dict[str, Callable[..., Any]] = {
            "get_random_recipient": self._rpc_get_random_recipient,
            "get_random_profile": self._rpc_get_random_profile,
            "increment_swipe_count": self._rpc_increment_swipe_count,
            "validate_coupon_and_activate": self._rpc_validate_coupon_and_activate,
            "get_profile_by_id": self._rpc_get_profile_by_id,
        }

    # -- plumbing ---------------------------------------------------------

    @contextmanager
    def _session(self, op: str, collection: str) -> Iterator[Any]:
        try:
            with self.session_factory() as db:
                yield db
        except IntegrityError as exc:
            logger.info("[GATEWAY] %s on %s hit a unique guard: %s", op, collection, exc.orig)
            raise ConflictError(f"{collection} {op} conflicts with an existing record") from exc
        except OperationalError as exc:
            logger.warning("[GATEWAY] %s on %s failed: %s", op, collection, exc.orig)
            raise TransientError("Storage is unavailable, please try again") from exc
        except DBAPIError as exc:
            if exc.connection_invalidated:
                raise TransientError("Storage connection lost, please try again") from exc
            raise

    def _table(self, collection: str):
        try:
            return Base.metadata.tables[collection]
        except KeyError:
            raise ValueError(f"Unknown collection: {collection}") from None

    def _compile(self, table, predicate: Predicate):
        if isinstance(predicate, AnyOf):
            return or_(*[self._compile(table, p) for p in predicate.predicates])
        if isinstance(predicate, AllOf):
            return and_(*[self._compile(table, p) for p in predicate.predicates])
        col = table.c[predicate.field]
        if isinstance(predicate, Eq):
            return col.is_(None) if predicate.value is None else col == predicate.value
        if isinstance(predicate, Neq):
            return col.is_not(None) if predicate.value is None else col != predicate.value
        if isinstance(predicate, In):
            return col.in_(list(predicate.values))
        if isinstance(predicate, Lt):
            return col < predicate.value
        if isinstance(predicate, Lte):
            return col <= predicate.value
        if isinstance(predicate, Gt):
            return col > predicate.value
        if isinstance(predicate, Gte):
            return col >= predicate.value
        if isinstance(predicate, IsNull):
            return col.is_(None) if predicate.is_null else col.is_not(None)
        raise TypeError(f"Unsupported predicate: {predicate!r}")

    def _publish(self, event_type: str, collection: str, new: dict[str, Any], old: dict[str, Any] | None = None) -> None:
        if self.hub is None:
            return
        self.hub.publish(RealtimeEvent(event_type=event_type, collection=collection, new=new, old=old or {}))

    def _pk_clause(self, table, values: dict[str, Any]):
        return and_(*[col == values[col.name] for col in table.primary_key.columns])

    def _dialect_insert(self, db, table):
        name = db.get_bind().dialect.name
        if name == "postgresql":
            return postgresql.insert(table)
        if name == "sqlite":
            return sqlite.insert(table)
        raise NotImplementedError(f"upsert is not supported on {name}")

    # -- query interface --------------------------------------------------

    def select(
        self,
        collection: str,
        where: Sequence[Predicate] = (),
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        embed: Sequence[Embed] = (),
    ) -> list[dict[str, Any]]:
        table = self._table(collection)
        stmt = select(table)
        if where:
            stmt = stmt.where(*[self._compile(table, p) for p in where])
        if order_by:
            col = table.c[order_by]
            stmt = stmt.order_by(col.desc() if descending else col.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._session("select", collection) as db:
            rows = [_normalize_row(r) for r in db.execute(stmt).mappings().all()]
        for spec in embed:
            self._embed(rows, spec)
        return rows

    def _embed(self, rows: list[dict[str, Any]], spec: Embed) -> None:
        keys = sorted({str(r[spec.foreign_key]) for r in rows if r.get(spec.foreign_key)})
        related: dict[str, dict[str, Any]] = {}
        if keys:
            for rec in self.select(spec.collection, [In("id", keys)]):
                if spec.columns:
                    rec = {k: rec.get(k) for k in ("id", *spec.columns)}
                related[str(rec["id"])] = rec
        for r in rows:
            r[spec.alias] = related.get(str(r.get(spec.foreign_key)))

    # -- write interface --------------------------------------------------

    def insert(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        table = self._table(collection)
        values = dict(record)
        if "id" in table.c and not values.get("id"):
            values["id"] = str(uuid.uuid4())
        with self._session("insert", collection) as db:
            row = db.execute(table.insert().values(**values).returning(*table.c)).mappings().first()
            db.commit()
        created = _normalize_row(row)
        self._publish(INSERT, collection, created)
        return created

    def update(self, collection: str, where: Sequence[Predicate], patch: dict[str, Any]) -> list[dict[str, Any]]:
        if not where:
            raise ValueError("Refusing to update without a filter")
        table = self._table(collection)
        values = dict(patch)
        if "updated_at" in table.c and "updated_at" not in values:
            values["updated_at"] = _now_utc()
        clauses = [self._compile(table, p) for p in where]
        with self._session("update", collection) as db:
            before = {
                tuple(r[c.name] for c in table.primary_key.columns): _normalize_row(r)
                for r in db.execute(select(table).where(*clauses)).mappings().all()
            }
            if not before:
                return []
            rows = db.execute(table.update().where(*clauses).values(**values).returning(*table.c)).mappings().all()
            db.commit()
        updated = [_normalize_row(r) for r in rows]
        for row in updated:
            key = tuple(row[c.name] for c in table.primary_key.columns)
            self._publish(UPDATE, collection, row, before.get(key))
        return updated

    def upsert(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        table = self._table(collection)
        values = dict(record)
        pk_names = [c.name for c in table.primary_key.columns]
        if pk_names == ["id"] and not values.get("id"):
            values["id"] = str(uuid.uuid4())
        missing = [name for name in pk_names if name not in values]
        if missing:
            raise ValueError(f"upsert on {collection} requires {', '.join(missing)}")
        if "updated_at" in table.c and "updated_at" not in values:
            values["updated_at"] = _now_utc()
        with self._session("upsert", collection) as db:
            existing = db.execute(select(table).where(self._pk_clause(table, values))).mappings().first()
            stmt = self._dialect_insert(db, table).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=pk_names,
                set_={k: stmt.excluded[k] for k in values if k not in pk_names},
            ).returning(*table.c)
            row = db.execute(stmt).mappings().first()
            db.commit()
        saved = _normalize_row(row)
        if existing:
            self._publish(UPDATE, collection, saved, _normalize_row(existing))
        else:
            self._publish(INSERT, collection, saved)
        return saved

    # -- remote procedures ------------------------------------------------

    def rpc(self, name: str, **params: Any) -> Any:
        fn = self._rpcs.get(name)
        if fn is None:
            raise ValueError(f"Unknown remote procedure: {name}")
        return fn(**params)

    def _rpc_get_profile_by_id(self, profile_id: str) -> dict[str, Any] | None:
        rows = self.select("profiles", [Eq("id", profile_id)], limit=1)
        return rows[0] if rows else None

    def _rpc_get_random_recipient(self, sender_id: str) -> str | None:
        with self._session("rpc:get_random_recipient", "profiles") as db:
            row = db.execute(
                text(
                    """
                    SELECT id
                    FROM profiles
                    WHERE id <> :sender_id
                      AND first_name IS NOT NULL
                      AND is_active = TRUE
                      AND subscription_ended = FALSE
                    ORDER BY RANDOM()
                    LIMIT 1
                    """
                ),
                {"sender_id": sender_id},
            ).mappings().first()
        return str(row["id"]) if row else None

    def _rpc_get_random_profile(
        self,
        user_id: str,
        min_age: int,
        max_age: int,
        preferred_gender: str | None = None,
        preferred_city: str | None = None,
        exclude_ids: Sequence[str] = (),
    ) -> dict[str, Any] | None:
        table = self._table("profiles")
        columns = ", ".join(c.name for c in table.c)
        stmt = (
            text(
                f"""
                SELECT {columns}
                FROM profiles
                WHERE id <> :user_id
                  AND id NOT IN :exclude_ids
                  AND first_name IS NOT NULL
                  AND is_active = TRUE
                  AND subscription_ended = FALSE
                  AND age BETWEEN :min_age AND :max_age
                  AND (:preferred_gender IS NULL OR LOWER(gender) = LOWER(CAST(:preferred_gender AS TEXT)))
                  AND (:preferred_city IS NULL OR LOWER(city) = LOWER(CAST(:preferred_city AS TEXT)))
                ORDER BY RANDOM()
                LIMIT 1
                """
            )
            .bindparams(bindparam("exclude_ids", expanding=True))
            .columns(*table.c)
        )
        with self._session("rpc:get_random_profile", "profiles") as db:
            row = db.execute(
                stmt,
                {
                    "user_id": user_id,
                    "exclude_ids": list(exclude_ids),
                    "min_age": int(min_age),
                    "max_age": int(max_age),
                    "preferred_gender": preferred_gender or None,
                    "preferred_city": preferred_city or None,
                },
            ).mappings().first()
        return _normalize_row(row) if row else None

    def _rpc_increment_swipe_count(self, user_id: str, limit: int = DAILY_SWIPE_LIMIT, swipe_date: date | None = None) -> int:
        with self._session("rpc:increment_swipe_count", "swipe_counters") as db:
            row = db.execute(
                text(
                    """
                    INSERT INTO swipe_counters (user_id, swipe_date, swipe_count)
                    VALUES (:user_id, :swipe_date, 1)
                    ON CONFLICT (user_id, swipe_date)
                    DO UPDATE SET swipe_count = swipe_counters.swipe_count + 1
                    WHERE swipe_counters.swipe_count < :limit
                    RETURNING swipe_count
                    """
                ),
                {"user_id": user_id, "swipe_date": (swipe_date or _today_utc()).isoformat(), "limit": int(limit)},
            ).mappings().first()
            db.commit()
        if not row:
            return SWIPE_LIMIT_REACHED
        return int(row["swipe_count"])

    def _rpc_validate_coupon_and_activate(self, code: str, user_id: str) -> bool:
        with self._session("rpc:validate_coupon_and_activate", "coupons") as db:
            row = db.execute(
                text(
                    """
                    UPDATE coupons
                    SET used_count = used_count + 1
                    WHERE code = :code
                      AND is_active = TRUE
                      AND used_count < max_uses
                    RETURNING code
                    """
                ),
                {"code": code.strip().upper()},
            ).mappings().first()
            db.commit()
        if not row:
            return False
        self.update("profiles", [Eq("id", user_id)], {"is_active": True, "subscription_ended": False})
        return True
