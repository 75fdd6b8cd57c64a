"""Pytest fixtures for testing"""

import importlib.util
from pathlib import Path
from typing import Generator

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from fincalc.api.main import create_app
from fincalc.domain.products import Bank, BankProduct
from fincalc.infrastructure.clients.fee_data import FeeDataClient
from fincalc.infrastructure.database.models import Base
from fincalc.infrastructure.database.repositories import ProductRepository
from fincalc.infrastructure.database.session import get_db
from fincalc.infrastructure.storage import MemoryStorage
from fincalc.services.fee_data import NetworkMonitor

# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

MOCK_SERVER_PATH = Path(__file__).resolve().parents[1] / "mock" / "fee_data_server" / "main.py"

START_MS = 1_704_067_200_000  # 2024-01-01T00:00:00Z


def load_mock_fee_server():
    """Import the standalone mock server module from its file"""
    spec = importlib.util.spec_from_file_location("mock_fee_data_server", MOCK_SERVER_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module.app


class FakeClock:
    """Manually advanced epoch-ms clock"""

    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def mock_fee_server():
    """Fresh mock reference-data server per test"""
    return load_mock_fee_server()


@pytest.fixture
def fee_data_client(mock_fee_server) -> FeeDataClient:
    """Fee data client talking to the mock server in-process"""
    return FeeDataClient(base_url="http://fee-data.test", transport=httpx.ASGITransport(app=mock_fee_server))


@pytest.fixture
def network_monitor() -> NetworkMonitor:
    return NetworkMonitor(online=True)


@pytest.fixture
def client(db: Session, fee_data_client: FeeDataClient, network_monitor: NetworkMonitor) -> Generator[TestClient, None, None]:
    """Create FastAPI test client with test database and mock reference-data server"""
    app = create_app(engine=engine, fee_data_client=fee_data_client, network_monitor=network_monitor)

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client


def make_product(product_id: str, product_type: str = "credit", **overrides) -> BankProduct:
    fields = {
        "id": product_id,
        "bank_id": "bank_1",
        "product_type": product_type,
        "name": f"Product {product_id}",
        "interest_rate": 10.0,
        "min_amount": 100_000,
        "max_amount": 5_000_000,
        "min_term": 6,
        "max_term": 60,
    }
    fields.update(overrides)
    return BankProduct(**fields)


@pytest.fixture
def seeded_products(db: Session) -> list[BankProduct]:
    """Small catalog: two credit offers, a mortgage, a deposit and an insurance policy"""
    repository = ProductRepository(db)
    repository.create_bank(Bank(id="bank_1", name="Alpha Bank", short_name="Alpha", overall_rating=4.5, is_partner=True))
    repository.create_bank(Bank(id="bank_2", name="Beta Bank", short_name="Beta", overall_rating=3.0))

    products = [
        make_product("credit_cheap", interest_rate=6.0, is_featured=True, priority=5),
        make_product("credit_pricey", bank_id="bank_2", interest_rate=15.0, fees={"issuance": 8000}),
        make_product("mortgage_1", "mortgage", interest_rate=9.0, min_amount=1_000_000, max_amount=30_000_000, max_term=360),
        make_product("deposit_1", "deposit", interest_rate=7.0, min_amount=10_000, max_amount=None, max_term=36),
        make_product("insurance_1", "insurance", interest_rate=0.0, min_amount=None, max_amount=None),
    ]
    for product in products:
        repository.create_product(product)
    db.commit()
    return products


@pytest.fixture
def session_factory(db: Session):
    """Session factory over the test database (tables created by the db fixture)"""
    return TestingSessionLocal
