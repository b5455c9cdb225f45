import pytest
import uuid
from datetime import date, timedelta
from decimal import Decimal

from pharmapos import create_app
from pharmapos.database import get_session, create_all, drop_all
from pharmapos.models import Tenant, Warehouse, Fund, Patient, Product, ProductLot
from pharmapos.services.backend_service import SqlBackend, BackendResponse
from pharmapos.services.inventory_service import set_inventory_level


def _as_row(obj):
    """ORM instance -> backend row dict."""
    return {c.name: getattr(obj, c.name) for c in obj.__table__.columns}


class FailingBackend:
    """
    Backend wrapper returning an error envelope for chosen calls.

        backend.fail('sales_order_items', 'insert')
        backend.fail('inventory', 'update', after=1)   # second call fails
    """

    def __init__(self, inner):
        self.inner = inner
        self.name = inner.name
        self.calls = []
        self._rules = {}

    def fail(self, table, operation, after=0, times=None):
        self._rules[(table, operation)] = {'after': after, 'times': times, 'seen': 0, 'failed': 0}

    def _should_fail(self, table, operation):
        rule = self._rules.get((table, operation))
        if rule is None:
            return False
        rule['seen'] += 1
        if rule['seen'] <= rule['after']:
            return False
        if rule['times'] is not None and rule['failed'] >= rule['times']:
            return False
        rule['failed'] += 1
        return True

    def _call(self, operation, table, *args, **kwargs):
        self.calls.append((operation, table))
        if self._should_fail(table, operation):
            return BackendResponse(error={'message': f'injected {operation} failure on {table}', 'code': 'XX000'})
        return getattr(self.inner, operation)(table, *args, **kwargs)

    def select(self, table, *args, **kwargs):
        return self._call('select', table, *args, **kwargs)

    def insert(self, table, *args, **kwargs):
        return self._call('insert', table, *args, **kwargs)

    def update(self, table, *args, **kwargs):
        return self._call('update', table, *args, **kwargs)

    def delete(self, table, *args, **kwargs):
        return self._call('delete', table, *args, **kwargs)

    def upsert(self, table, *args, **kwargs):
        return self._call('upsert', table, *args, **kwargs)


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing."""
    return create_app('config.TestConfig')


@pytest.fixture(scope='function', autouse=True)
def app_context(app):
    with app.app_context():
        yield


@pytest.fixture(scope='function', autouse=True)
def database(app_context):
    """Fresh schema per test on the in-memory database."""
    create_all()
    yield
    get_session().remove()
    drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session():
    """Create database session for testing."""
    session = get_session()
    yield session
    session.rollback()


@pytest.fixture(scope='function')
def backend():
    return SqlBackend()


@pytest.fixture
def as_row():
    return _as_row


@pytest.fixture(scope='function')
def failing_backend(backend):
    return FailingBackend(backend)


@pytest.fixture(scope='function')
def tenant(session):
    suffix = str(uuid.uuid4())[:8]
    tenant = Tenant(slug=f'nha-thuoc-{suffix}', name=f'Nhà thuốc {suffix}', active=True)
    session.add(tenant)
    session.commit()
    return tenant


@pytest.fixture(scope='function')
def other_tenant(session):
    suffix = str(uuid.uuid4())[:8]
    tenant = Tenant(slug=f'phong-kham-{suffix}', name=f'Phòng khám {suffix}', active=True)
    session.add(tenant)
    session.commit()
    return tenant


@pytest.fixture(scope='function')
def warehouse(session, tenant):
    warehouse = Warehouse(tenant_id=tenant.id, name='Kho chính', code='KC', active=True)
    session.add(warehouse)
    session.commit()
    return warehouse


@pytest.fixture(scope='function')
def fund(session, tenant, warehouse):
    fund = Fund(tenant_id=tenant.id, warehouse_id=warehouse.id, name='Quỹ tiền mặt', active=True)
    session.add(fund)
    session.commit()
    return fund


def _product(session, tenant, name, sku, retail, wholesale=None, **kwargs):
    product = Product(
        tenant_id=tenant.id, name=name, sku=sku,
        retail_price=Decimal(retail), wholesale_price=Decimal(wholesale or retail),
        active=True, **kwargs
    )
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def product_a(session, tenant):
    return _product(session, tenant, 'Paracetamol 500mg', 'PARA500', '30', '25',
                    category='Giảm đau', manufacturer='DHG')


@pytest.fixture(scope='function')
def product_b(session, tenant):
    return _product(session, tenant, 'Vitamin C 1000mg', 'VITC1000', '20', '16',
                    category='Vitamin', manufacturer='Traphaco')


@pytest.fixture(scope='function')
def product_x(session, tenant):
    return _product(session, tenant, 'Amoxicillin 250mg', 'AMOX250', '100', '80',
                    category='Kháng sinh', manufacturer='Imexpharm')


@pytest.fixture(scope='function')
def lot_product(session, tenant):
    return _product(session, tenant, 'Insulin Mixtard', 'INSMIX', '250', '220',
                    category='Tiểu đường', manufacturer='Novo', enable_lot_management=True)


@pytest.fixture(scope='function')
def stocked(backend, tenant, warehouse, product_a, product_b, product_x, lot_product):
    """On-hand: A=10, B=10, X=5, lot product=8."""
    for product, qty in ((product_a, 10), (product_b, 10), (product_x, 5), (lot_product, 8)):
        set_inventory_level(backend, tenant.id, product.id, warehouse.id, qty)


@pytest.fixture(scope='function')
def lots(session, tenant, warehouse, lot_product):
    """Two lots of the lot product, the later-expiring one first in id order."""
    late = ProductLot(tenant_id=tenant.id, product_id=lot_product.id, warehouse_id=warehouse.id,
                      lot_number='L-002', batch_code='B2', expiry_date=date.today() + timedelta(days=300),
                      quantity=5)
    early = ProductLot(tenant_id=tenant.id, product_id=lot_product.id, warehouse_id=warehouse.id,
                       lot_number='L-001', batch_code='B1', expiry_date=date.today() + timedelta(days=30),
                       quantity=3)
    empty = ProductLot(tenant_id=tenant.id, product_id=lot_product.id, warehouse_id=warehouse.id,
                       lot_number='L-000', batch_code='B0', expiry_date=date.today() + timedelta(days=5),
                       quantity=0)
    session.add_all([late, early, empty])
    session.commit()
    return {'late': late, 'early': early, 'empty': empty}


@pytest.fixture(scope='function')
def b2b_customer(session, tenant):
    customer = Patient(tenant_id=tenant.id, full_name='Công ty Dược An Khang', phone_number='0901234567',
                       is_b2b_customer=True)
    session.add(customer)
    session.commit()
    return customer


@pytest.fixture(scope='function')
def walk_in_patient(session, tenant):
    patient = Patient(tenant_id=tenant.id, full_name='Nguyễn Văn A', phone_number='0912345678')
    session.add(patient)
    session.commit()
    return patient


@pytest.fixture(scope='function')
def tenant_client(client, tenant):
    """Test client whose session carries the tenant and an employee."""
    with client.session_transaction() as sess:
        sess['tenant_id'] = tenant.id
        sess['employee_id'] = 'emp-001'
    return client
