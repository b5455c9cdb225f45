"""Middleware for tenant and employee context."""
from functools import wraps
from flask import session, g, current_app

from pharmapos.exceptions import UnauthorizedError
from pharmapos.services.backend_service import get_backend


def load_tenant_context():
    """
    Load tenant and employee into g (Flask's per-request global).

    Session issuing lives outside this service; the session is expected to
    carry tenant_id and employee_id. Sets g.tenant_id only for an active
    tenant.
    """
    g.tenant_id = None
    g.employee_id = session.get('employee_id')

    tenant_id = session.get('tenant_id')
    if not tenant_id:
        return

    response = get_backend().select('tenant', {'id': tenant_id})
    if not response.ok:
        current_app.logger.error(f"Error loading tenant {tenant_id}: {response.error.get('message')}")
        return

    if response.data and response.data[0].get('active'):
        g.tenant_id = int(tenant_id)
    else:
        session.pop('tenant_id', None)


def require_tenant(f):
    """Decorator: require an active tenant in the session."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('tenant_id') is None:
            raise UnauthorizedError('Vui lòng chọn cơ sở trước khi bán hàng')
        return f(*args, **kwargs)
    return decorated_function
