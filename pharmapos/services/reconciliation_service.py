"""
Reconciliation queue for sale steps that were allowed to fail.

Tasks are keyed by '<kind>:<order_id>' so enqueuing twice is a no-op, and
every replay is idempotent (see sales_service soft step writers).
"""
import logging
from typing import Any, Dict, List, Optional

from flask import current_app

from pharmapos.exceptions import PosError
from pharmapos.models import ReconciliationKind, ReconciliationStatus
from pharmapos.services import inventory_service

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5


def idempotency_key(kind: str, order_id: str) -> str:
    return f'{kind}:{order_id}'


def _count(kind: str, outcome: str) -> None:
    from pharmapos.blueprints.metrics import reconciliation_tasks_total
    reconciliation_tasks_total.labels(kind=kind, outcome=outcome).inc()


def enqueue_task(backend, tenant_id: int, kind: str, order_id: str, payload: Dict[str, Any],
                 error: Optional[Exception] = None) -> Optional[Dict[str, Any]]:
    """
    Queue a replay of a soft sale step.

    The sale has already committed when this runs, so a failure to queue is
    logged at error level and reported as None instead of raised.
    """
    key = idempotency_key(kind, order_id)
    existing = backend.select('reconciliation_tasks', {'idempotency_key': key})
    if existing.ok and existing.data:
        return existing.data[0]

    response = backend.insert('reconciliation_tasks', {
        'tenant_id': tenant_id,
        'kind': kind,
        'order_id': order_id,
        'payload': payload,
        'idempotency_key': key,
        'status': ReconciliationStatus.PENDING.value,
        'attempts': 0,
        'last_error': str(error) if error else None,
    })
    if not response.ok:
        logger.error(f"[RECONCILE] Could not queue {key}: {response.error.get('message')}")
        _count(kind, 'queue_failed')
        return None

    logger.warning(f"[RECONCILE] Queued {key} for tenant {tenant_id}")
    _count(kind, 'queued')
    return response.data[0]


def replay_task(backend, task: Dict[str, Any]) -> None:
    """Run the step a task stands for. Raises on failure."""
    from pharmapos.services.sales_service import insert_combo_tracking_rows, deduct_lots_for_order

    payload = task.get('payload') or {}
    if task['kind'] == ReconciliationKind.SALES_COMBO_ITEMS.value:
        insert_combo_tracking_rows(backend, task['order_id'], payload.get('rows', []))
    elif task['kind'] == ReconciliationKind.LOT_DEDUCTION.value:
        retries = current_app.config.get('INVENTORY_CAS_RETRIES', inventory_service.DEFAULT_CAS_RETRIES) \
            if current_app else inventory_service.DEFAULT_CAS_RETRIES
        deduct_lots_for_order(backend, task['order_id'], payload.get('lots', []), retries)
    else:
        raise ValueError(f"Unknown reconciliation kind: {task['kind']}")


def process_pending_tasks(backend, tenant_id: Optional[int] = None, limit: int = 50) -> Dict[str, int]:
    """
    Retry pending tasks, oldest first.

    A task that keeps failing is marked failed after MAX_ATTEMPTS.

    Returns:
        {'processed', 'done', 'retry', 'failed'}
    """
    filters = {'status': ReconciliationStatus.PENDING.value}
    if tenant_id is not None:
        filters['tenant_id'] = tenant_id
    tasks: List[Dict[str, Any]] = backend.select(
        'reconciliation_tasks', filters, order_by=['id'], limit=limit
    ).unwrap('reconciliation_tasks', 'select')

    stats = {'processed': 0, 'done': 0, 'retry': 0, 'failed': 0}
    for task in tasks:
        stats['processed'] += 1
        attempts = int(task.get('attempts') or 0) + 1
        try:
            replay_task(backend, task)
        except (PosError, ValueError) as e:
            status = (ReconciliationStatus.FAILED.value if attempts >= MAX_ATTEMPTS
                      else ReconciliationStatus.PENDING.value)
            backend.update('reconciliation_tasks',
                           {'attempts': attempts, 'last_error': str(e), 'status': status},
                           {'id': task['id']}).unwrap('reconciliation_tasks', 'update')
            outcome = 'failed' if status == ReconciliationStatus.FAILED.value else 'retry'
            stats[outcome] += 1
            _count(task['kind'], outcome)
            logger.warning(f"[RECONCILE] {task['idempotency_key']} attempt {attempts} failed: {e}")
            continue

        backend.update('reconciliation_tasks',
                       {'attempts': attempts, 'last_error': None, 'status': ReconciliationStatus.DONE.value},
                       {'id': task['id']}).unwrap('reconciliation_tasks', 'update')
        stats['done'] += 1
        _count(task['kind'], 'done')
        logger.info(f"[RECONCILE] {task['idempotency_key']} reconciled")

    return stats
