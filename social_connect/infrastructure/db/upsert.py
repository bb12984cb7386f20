from collections.abc import Iterable, Sequence
from typing import Any, TypeVar

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from social_connect.infrastructure.db.base import Base

ModelT = TypeVar("ModelT", bound=Base)

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def upsert_row(
    db: Session,
    model: type[ModelT],
    *,
    values: dict[str, Any],
    conflict_columns: Sequence[str],
    update_columns: Iterable[str] | None = None,
) -> ModelT:
    """Insert a row or update it in place when the unique key already exists.

    Runs as a single ``INSERT .. ON CONFLICT`` statement, so concurrent callers
    racing on the same key converge on one row (last write wins). Returns the
    persisted row reloaded through the session.
    """
    dialect_name = db.get_bind().dialect.name
    insert = _DIALECT_INSERTS.get(dialect_name)
    if insert is None:
        raise NotImplementedError(f"Upsert is not supported for dialect '{dialect_name}'")

    statement = insert(model).values(**values)
    columns = list(update_columns) if update_columns is not None else list(values)
    columns = [name for name in columns if name not in conflict_columns and name != "id"]
    if columns:
        assignments = {name: statement.excluded[name] for name in columns}
        if "updated_at" in model.__table__.c and "updated_at" not in assignments:
            assignments["updated_at"] = func.now()
        statement = statement.on_conflict_do_update(index_elements=list(conflict_columns), set_=assignments)
    else:
        statement = statement.on_conflict_do_nothing(index_elements=list(conflict_columns))
    db.execute(statement)

    key_filter = [getattr(model, name) == values[name] for name in conflict_columns]
    return db.execute(
        select(model).where(*key_filter).execution_options(populate_existing=True)
    ).scalar_one()
