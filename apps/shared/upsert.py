"""
Atomic upsert utilities using INSERT ... ON CONFLICT

Replaces the unsafe check-then-insert pattern with a single statement the
database resolves atomically. Works on PostgreSQL (deployment) and SQLite
(tests and local runs), which share the ON CONFLICT DO UPDATE syntax.

Usage:
    from apps.shared.upsert import atomic_upsert

    # Replace this unsafe pattern:
    existing = db.query(Model).filter(Model.key == value).first()
    if existing:
        existing.data = new_data
    else:
        db.add(Model(key=value, data=new_data))

    # With this atomic operation:
    atomic_upsert(db, Model, {'key': value, 'data': new_data}, conflict_fields=['key'])
"""

from typing import Any, Dict, Iterable, Optional, Type

from sqlalchemy import func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from apps.shared.database import Base, dialect_name


_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def _insert_for(db: Session):
    name = dialect_name(db)
    try:
        return _INSERTS[name]
    except KeyError:
        raise ValueError(f"Atomic upsert is not supported on dialect '{name}'")


def atomic_upsert(
    db: Session,
    model: Type[Base],
    values: Dict[str, Any],
    conflict_fields: Iterable[str],
    update_fields: Optional[Iterable[str]] = None,
    timestamp_field: Optional[str] = None,
) -> None:
    """
    Insert a row, or on a conflict over conflict_fields replace its columns.

    Args:
        db: SQLAlchemy database session
        model: SQLAlchemy model class (e.g., StravaActivity)
        values: Column name -> value for the INSERT
        conflict_fields: Columns of the unique constraint / primary key
        update_fields: Columns to overwrite on conflict. Defaults to every
            key in values that is not a conflict field (full replace).
        timestamp_field: Optional column set to NOW() on both insert and update

    Example:
        atomic_upsert(
            db=db,
            model=StravaActivity,
            values={'id': 42, 'name': 'Morning Run', ...},
            conflict_fields=['id'],
            timestamp_field='fetched_at',
        )

    Raises:
        ValueError: If the model lacks a referenced column or the dialect
            has no ON CONFLICT support
    """
    conflict_fields = list(conflict_fields)
    columns = model.__table__.columns

    for field in [*values.keys(), *conflict_fields]:
        if field not in columns:
            raise ValueError(f"Model {model.__name__} does not have column '{field}'")

    if timestamp_field is not None and timestamp_field not in columns:
        raise ValueError(f"Model {model.__name__} does not have column '{timestamp_field}'")

    if update_fields is None:
        update_fields = [key for key in values if key not in conflict_fields]

    insert_values = dict(values)
    if timestamp_field is not None:
        insert_values[timestamp_field] = func.now()

    stmt = _insert_for(db)(model.__table__).values(**insert_values)

    # excluded.<column> references the row that would have been inserted
    update_dict = {field: getattr(stmt.excluded, field) for field in update_fields}
    if timestamp_field is not None:
        update_dict[timestamp_field] = func.now()

    if update_dict:
        stmt = stmt.on_conflict_do_update(index_elements=conflict_fields, set_=update_dict)
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=conflict_fields)

    db.execute(stmt)
