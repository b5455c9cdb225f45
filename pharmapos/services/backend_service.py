"""
Data backend for POS operations.

Every call is a single request/response round trip that answers with a
BackendResponse envelope ({data, error}); there is no multi-call transaction.
SqlBackend fronts the database directly, PostgrestClient
(see postgrest_client.py) talks to a hosted PostgREST-compatible service.

Filters are dicts of column -> value (equality) or column -> (op, value) with
op in eq, neq, gt, gte, lt, lte, in, is.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from flask import Flask, current_app
from sqlalchemy import select, insert, update, delete
from sqlalchemy.exc import SQLAlchemyError

from pharmapos.database import get_session
from pharmapos.exceptions import BackendError
from pharmapos.models import (
    Tenant, Warehouse, Fund, Patient, Product, Inventory, ProductLot,
    Promotion, Combo, ComboItem, SalesOrder, SalesOrderItem, SalesComboItem,
    SalesOrderLotItem, Transaction, B2BQuote, B2BQuoteItem, ReconciliationTask
)

logger = logging.getLogger(__name__)

Rows = Union[Dict[str, Any], List[Dict[str, Any]]]

TABLES = {
    'tenant': Tenant,
    'warehouse': Warehouse,
    'fund': Fund,
    'patients': Patient,
    'product': Product,
    'inventory': Inventory,
    'product_lots': ProductLot,
    'promotions': Promotion,
    'combos': Combo,
    'combo_items': ComboItem,
    'sales_orders': SalesOrder,
    'sales_order_items': SalesOrderItem,
    'sales_combo_items': SalesComboItem,
    'sales_order_lot_items': SalesOrderLotItem,
    'transactions': Transaction,
    'b2b_quotes': B2BQuote,
    'b2b_quote_items': B2BQuoteItem,
    'reconciliation_tasks': ReconciliationTask,
}

FILTER_OPS = ('eq', 'neq', 'gt', 'gte', 'lt', 'lte', 'in', 'is')


class BackendResponse:
    """Envelope returned by every backend call."""

    __slots__ = ('data', 'error')

    def __init__(self, data: Any = None, error: Optional[Dict[str, Any]] = None):
        self.data = data
        self.error = error

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self, table: str = None, operation: str = None) -> Any:
        """Return data or raise BackendError built from the error envelope."""
        if self.error is not None:
            raise BackendError.from_envelope(self.error, table, operation)
        return self.data

    def __repr__(self):
        return f"<BackendResponse(ok={self.ok}, error={self.error})>"


def normalize_filter(value: Any):
    """Return (op, value) for a filter entry."""
    if isinstance(value, tuple) and len(value) == 2 and value[0] in FILTER_OPS:
        return value
    return 'eq', value


def as_list(rows: Rows) -> List[Dict[str, Any]]:
    return [rows] if isinstance(rows, dict) else list(rows)


class SqlBackend:
    """Backend implementation over the SQLAlchemy session.

    Each call commits (or rolls back) on its own, matching the remote
    service semantics the POS pipeline is written against.
    """

    name = 'sql'

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session or get_session()

    # -----------------------------------------------------
    # Helpers
    # -----------------------------------------------------

    @staticmethod
    def _table(name: str):
        model = TABLES.get(name)
        if model is None:
            raise ValueError(f"Unknown table: {name}")
        return model.__table__

    @staticmethod
    def _where(table, stmt, filters: Optional[Dict[str, Any]]):
        for column_name, raw in (filters or {}).items():
            column = table.c[column_name]
            op, value = normalize_filter(raw)
            if op == 'eq':
                stmt = stmt.where(column == value)
            elif op == 'neq':
                stmt = stmt.where(column != value)
            elif op == 'gt':
                stmt = stmt.where(column > value)
            elif op == 'gte':
                stmt = stmt.where(column >= value)
            elif op == 'lt':
                stmt = stmt.where(column < value)
            elif op == 'lte':
                stmt = stmt.where(column <= value)
            elif op == 'in':
                stmt = stmt.where(column.in_(list(value)))
            elif op == 'is':
                stmt = stmt.where(column.is_(value))
        return stmt

    def _run(self, name: str, operation: str, fn) -> BackendResponse:
        session = self.session
        try:
            data = fn(session)
            session.commit()
            return BackendResponse(data=data)
        except SQLAlchemyError as e:
            session.rollback()
            code = getattr(getattr(e, 'orig', None), 'pgcode', None) or type(e).__name__
            logger.warning(f"[BACKEND] {operation} {name} failed: {e}")
            return BackendResponse(error={'message': str(getattr(e, 'orig', e)), 'code': code})

    # -----------------------------------------------------
    # CRUD
    # -----------------------------------------------------

    def select(self, name: str, filters: Optional[Dict[str, Any]] = None,
               order_by: Optional[List[str]] = None, limit: Optional[int] = None) -> BackendResponse:
        table = self._table(name)

        def _select(session):
            stmt = self._where(table, select(table), filters)
            for key in order_by or []:
                column = table.c[key.lstrip('-')]
                stmt = stmt.order_by(column.desc() if key.startswith('-') else column.asc())
            if limit:
                stmt = stmt.limit(limit)
            return [dict(row) for row in session.execute(stmt).mappings().all()]

        return self._run(name, 'select', _select)

    def insert(self, name: str, rows: Rows) -> BackendResponse:
        table = self._table(name)

        def _insert(session):
            created = []
            for row in as_list(rows):
                stmt = insert(table).values(**row).returning(*table.c)
                created.append(dict(session.execute(stmt).mappings().one()))
            return created

        return self._run(name, 'insert', _insert)

    def update(self, name: str, values: Dict[str, Any], filters: Dict[str, Any]) -> BackendResponse:
        if not filters:
            raise ValueError('update requires filters')
        table = self._table(name)

        def _update(session):
            stmt = self._where(table, update(table), filters).values(**values).returning(*table.c)
            return [dict(row) for row in session.execute(stmt).mappings().all()]

        return self._run(name, 'update', _update)

    def delete(self, name: str, filters: Dict[str, Any]) -> BackendResponse:
        if not filters:
            raise ValueError('delete requires filters')
        table = self._table(name)

        def _delete(session):
            stmt = self._where(table, delete(table), filters).returning(*table.c)
            return [dict(row) for row in session.execute(stmt).mappings().all()]

        return self._run(name, 'delete', _delete)

    def upsert(self, name: str, rows: Rows, on_conflict: List[str]) -> BackendResponse:
        table = self._table(name)

        def _upsert(session):
            dialect = session.get_bind().dialect.name
            if dialect == 'postgresql':
                from sqlalchemy.dialects.postgresql import insert as dialect_insert
            elif dialect == 'sqlite':
                from sqlalchemy.dialects.sqlite import insert as dialect_insert
            else:
                raise ValueError(f"upsert not supported on {dialect}")

            written = []
            for row in as_list(rows):
                stmt = dialect_insert(table).values(**row)
                update_cols = {k: stmt.excluded[k] for k in row if k not in on_conflict}
                stmt = stmt.on_conflict_do_update(index_elements=on_conflict, set_=update_cols)
                written.append(dict(session.execute(stmt.returning(*table.c)).mappings().one()))
            return written

        return self._run(name, 'upsert', _upsert)


def create_backend(app: Flask):
    """Build the backend selected by BACKEND_MODE."""
    mode = app.config.get('BACKEND_MODE', 'sql')
    if mode == 'rest':
        from pharmapos.services.postgrest_client import PostgrestClient
        return PostgrestClient(
            base_url=app.config['BACKEND_URL'],
            api_key=app.config.get('BACKEND_API_KEY'),
            timeout=app.config.get('BACKEND_TIMEOUT', 10)
        )
    if mode == 'sql':
        return SqlBackend()
    raise ValueError(f"Unknown BACKEND_MODE: {mode}")


def init_backend(app: Flask) -> None:
    """Attach the data backend to the app."""
    if not hasattr(app, 'extensions'):
        app.extensions = {}
    app.extensions['backend'] = create_backend(app)
    app.logger.info(f"[BACKEND] Using {app.extensions['backend'].name} backend")


def get_backend():
    """Get the backend of the current app."""
    backend = current_app.extensions.get('backend')
    if backend is None:
        raise RuntimeError("Backend not initialized.")
    return backend
