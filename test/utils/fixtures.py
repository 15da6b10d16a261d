import os

import pytest
from chalice.test import Client

from app import app
from chalicelib.constants.constants import MANAGER_ACCESS_FALLBACK
from chalicelib.dynamo_store import DynamoStore
from chalicelib.file_store import FileStore
from chalicelib.models import User
from chalicelib.rows import UserRow
from test.utils.fake_dynamo import fake_tables
from test.utils.store_data import ROOT_MANAGER_ID

PROJECT_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


@pytest.fixture
def file_store(tmp_path, request) -> FileStore:
    store = FileStore(data_dir=str(tmp_path))
    request.addfinalizer(store.close)
    return store


@pytest.fixture
def dynamo_tables() -> dict:
    return fake_tables()


@pytest.fixture
def recorded_sleeps() -> list:
    return []


def seed_manager(tables: dict, user_id: str = ROOT_MANAGER_ID, phone: str = '+972500000000'):
    """ Remote tables are not seeded by the store, tests put a manager row in place """
    manager = User(id=user_id, name='Head Manager', phone=phone, password='1234', role='manager',
                   email='admin@droppi.co.il')
    tables[UserRow.table_env].put_item(Item=UserRow.clean(UserRow.to_item(manager, '2024-01-01T00:00:00.000Z')))
    return manager


@pytest.fixture
def dynamo_store(dynamo_tables, recorded_sleeps, request) -> DynamoStore:
    seed_manager(dynamo_tables)
    store = DynamoStore(table_factory=lambda env: dynamo_tables[env], sleep=recorded_sleeps.append)
    request.addfinalizer(store.close)
    return store


@pytest.fixture(params=['file', 'dynamodb'])
def store(request, tmp_path):
    """ Every operation test runs against both backends """
    if request.param == 'file':
        delivery_store = FileStore(data_dir=str(tmp_path))
    else:
        tables = fake_tables()
        seed_manager(tables)
        delivery_store = DynamoStore(table_factory=lambda env: tables[env], sleep=lambda seconds: None)
    request.addfinalizer(delivery_store.close)
    return delivery_store


@pytest.fixture
def chalice_client(tmp_path, request, monkeypatch):
    local_store = FileStore(data_dir=str(tmp_path), manager_access=MANAGER_ACCESS_FALLBACK)
    monkeypatch.setattr('app.store', local_store)
    request.addfinalizer(local_store.close)

    with Client(app, stage_name='local', project_dir=PROJECT_DIR) as client:
        yield client
