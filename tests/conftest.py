# tests/conftest.py
import uuid
import pytest
from db.db_manager import DBManager
from kernel.invoice_repo import InvoiceRepoDB
from services.invoice_service import InvoiceService
from services.payment_service import PaymentService

@pytest.fixture(autouse=True, scope="function")
def setup_isolated_db():
    """
    Fresh shared in-memory DB per test function.
    Prevents cross-test contamination while keeping threads aligned.
    """
    uri = f"file:memdb_{uuid.uuid4().hex}?mode=memory&cache=shared"
    DBManager.configure(path=uri)
    DBManager.initialize()   # schema + migrations
    yield
    DBManager.close()

@pytest.fixture
def file_db(tmp_path):
    """
    On-disk DB for multi-threaded tests: shared-cache memory DBs don't honour busy_timeout.
    """
    DBManager.configure(path=str(tmp_path / "invoicing.db"), max_retries=10, retry_backoff_s=0.01)
    DBManager.initialize()
    yield tmp_path / "invoicing.db"
    DBManager.close()

@pytest.fixture
def repo():
    return InvoiceRepoDB()

@pytest.fixture
def invoices(repo):
    return InvoiceService(repo=repo)

@pytest.fixture
def payments(repo):
    return PaymentService(repo=repo)
