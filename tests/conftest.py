import os
import sys
import tempfile
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault('APP_ENV', 'test')
os.environ.setdefault('DATABASE_URL', f"sqlite:///{Path(tempfile.gettempdir()) / 'ethersub-test.db'}")

from app.config import DaemonConfig, get_settings
from app.core.exceptions import InvalidRecipientError, TransientInfraError
from app.models import Base, Subscription

NOW = datetime(2024, 1, 10, 12, 0, 0)


class FakeTransport:
    """In-memory email transport that can be told to reject or drop addresses."""

    def __init__(self):
        self.attempts = []
        self.deliveries = []
        self.failures = {}

    def fail(self, address, kind):
        self.failures[address] = kind

    def heal(self, address):
        self.failures.pop(address, None)

    def delivered_to(self, address):
        return [d for d in self.deliveries if d[0] == address]

    async def deliver(self, to_address, template_id, template_data):
        self.attempts.append(to_address)
        kind = self.failures.get(to_address)
        if kind == 'invalid':
            raise InvalidRecipientError(to_address)
        if kind == 'transient':
            raise TransientInfraError(f"provider unavailable for {to_address}")
        self.deliveries.append((to_address, template_id, template_data))
        return {'status': 'sent', 'to': to_address}


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'refunds.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture
def add_subscription(session_factory):
    def _add(sub_id, hours_inactive, status='inactive', subscriber_email=None, supplier_email=None):
        with session_factory() as db:
            db.add(
                Subscription(
                    id=sub_id,
                    status=status,
                    last_activity_at=NOW - timedelta(hours=hours_inactive),
                    subscriber_email=subscriber_email or f"subscriber-{sub_id.lower()}@example.com",
                    supplier_email=supplier_email or f"supplier-{sub_id.lower()}@example.com",
                )
            )
            db.commit()

    return _add


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def daemon_config():
    return DaemonConfig(
        enabled=True,
        scan_interval=timedelta(minutes=15),
        inactivity_threshold=timedelta(hours=24),
    )


@pytest.fixture
def now():
    return NOW
