import json
import os
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from chalicelib.file_store import FileStore
from chalicelib.snapshot import DEFAULT_USERS
from chalicelib.utils.exceptions import StateConflict, StorageFailed

from test.utils.fixtures import file_store
from test.utils.store_data import register_business, register_courier, create_delivery


def read_json(path):
    return json.loads(path.read_text(encoding='utf-8'))


def test_first_load_seeds_defaults_and_writes_primary(file_store):
    users = file_store.get_users()
    assert [user.id for user in users] == [seed.id for seed in DEFAULT_USERS]
    assert file_store.primary_path.exists()
    assert [item['id'] for item in read_json(file_store.primary_path)['users']] == [seed.id for seed in DEFAULT_USERS]


def test_write_keeps_previous_record_as_backup(file_store):
    file_store.get_users()
    business = register_business(file_store)

    primary_ids = [item['id'] for item in read_json(file_store.primary_path)['users']]
    backup_ids = [item['id'] for item in read_json(file_store.backup_path)['users']]
    assert business.id in primary_ids
    assert business.id not in backup_ids
    assert not list(file_store.data_dir.glob('*.tmp'))


def test_state_survives_reopening(tmp_path, request):
    store = FileStore(data_dir=str(tmp_path))
    business = register_business(store)
    delivery = create_delivery(store, business.id)
    store.close()

    reopened = FileStore(data_dir=str(tmp_path))
    request.addfinalizer(reopened.close)
    assert reopened.get_user(business.id) == business
    assert [d.id for d in reopened.get_deliveries()] == [delivery.id]
    assert reopened.get_customer_by_phone('0541234567').name == 'Noa'


def test_malformed_primary_falls_back_to_backup(tmp_path, request):
    store = FileStore(data_dir=str(tmp_path))
    register_business(store)
    store.close()
    backup = read_json(store.backup_path)
    store.primary_path.write_text('{not json', encoding='utf-8')

    reopened = FileStore(data_dir=str(tmp_path))
    request.addfinalizer(reopened.close)
    assert [user.id for user in reopened.get_users()] == [item['id'] for item in backup['users']]
    assert read_json(reopened.primary_path) == backup


def test_undecodable_primary_falls_back_to_backup(tmp_path, request):
    store = FileStore(data_dir=str(tmp_path))
    register_business(store)
    store.close()
    backup = read_json(store.backup_path)
    store.primary_path.write_bytes(b'\xff\xfe\x00garbage')

    reopened = FileStore(data_dir=str(tmp_path))
    request.addfinalizer(reopened.close)
    assert [user.id for user in reopened.get_users()] == [item['id'] for item in backup['users']]
    assert read_json(reopened.primary_path) == backup


def test_deleted_primary_is_restored_from_backup(tmp_path, request):
    store = FileStore(data_dir=str(tmp_path))
    register_business(store)
    store.close()
    backup = read_json(store.backup_path)
    store.primary_path.unlink()

    reopened = FileStore(data_dir=str(tmp_path))
    request.addfinalizer(reopened.close)
    reopened.load()
    assert read_json(reopened.primary_path) == backup


def test_persisted_snapshot_loads_back_equal(tmp_path, request):
    store = FileStore(data_dir=str(tmp_path))
    business = register_business(store)
    create_delivery(store, business.id, preparation_time_minutes=10)
    snapshot = store.load()
    store.persist(snapshot)
    store.close()

    reopened = FileStore(data_dir=str(tmp_path))
    request.addfinalizer(reopened.close)
    assert reopened.load() == snapshot


@pytest.mark.parametrize('content',['', '   ', '[]', '{"users": "nope", "deliveries": []}'])
def test_unreadable_records_start_from_defaults(tmp_path, request, content):
    (tmp_path / 'store.json').write_text(content, encoding='utf-8')
    store = FileStore(data_dir=str(tmp_path))
    request.addfinalizer(store.close)
    assert [user.id for user in store.get_users()] == [seed.id for seed in DEFAULT_USERS]


def test_duplicate_phones_are_removed_on_load(tmp_path, request):
    manager = DEFAULT_USERS[0].to_dict()
    duplicate = {**DEFAULT_USERS[1].to_dict(), 'phone': '0500000000'}
    (tmp_path / 'store.json').write_text(json.dumps({'users': [manager, duplicate], 'deliveries': []}),
                                         encoding='utf-8')
    store = FileStore(data_dir=str(tmp_path))
    request.addfinalizer(store.close)

    assert [user.id for user in store.get_users()] == [manager['id']]
    assert [item['id'] for item in read_json(store.primary_path)['users']] == [manager['id']]


def test_concurrent_first_loads_read_the_disk_once(file_store, monkeypatch):
    calls = []
    original = file_store._read_and_normalize
    gate = threading.Event()

    def counted():
        calls.append(threading.current_thread().name)
        gate.wait(timeout=5)
        return original()

    monkeypatch.setattr(file_store, '_read_and_normalize', counted)
    with ThreadPoolExecutor(max_workers=8) as pool:
        futures = [pool.submit(file_store.load) for _ in range(8)]
        gate.set()
        snapshots = [future.result(timeout=10) for future in futures]

    assert len(calls) == 1
    assert all(snapshot is snapshots[0] for snapshot in snapshots)


def test_concurrent_takes_have_one_winner(file_store):
    business = register_business(file_store)
    couriers = [register_courier(file_store, phone=f'05311122{i:02d}', name=f'Courier{i}') for i in range(6)]
    delivery = create_delivery(file_store, business.id)

    def take(courier):
        try:
            return file_store.courier_take_delivery(courier.id, delivery.id)
        except StateConflict:
            return None

    with ThreadPoolExecutor(max_workers=6) as pool:
        results = list(pool.map(take, couriers))

    winners = [result for result in results if result is not None]
    assert len(winners) == 1
    stored = next(d for d in file_store.get_deliveries() if d.id == delivery.id)
    assert stored.courier_id == winners[0].courier_id


def test_failed_write_keeps_memory_and_disk(file_store, monkeypatch):
    file_store.get_users()
    before = read_json(file_store.primary_path)
    original_replace = os.replace

    def failing_replace(source, destination):
        if str(source).endswith('.tmp'):
            raise OSError('disk is full')
        return original_replace(source, destination)

    monkeypatch.setattr(os, 'replace', failing_replace)
    with pytest.raises(StorageFailed):
        register_business(file_store)
    monkeypatch.undo()

    assert read_json(file_store.primary_path) == before
    assert [user.id for user in file_store.get_users()] == [seed.id for seed in DEFAULT_USERS]
    assert not list(file_store.data_dir.glob('*.tmp'))


def test_unchanged_snapshot_is_not_rewritten(file_store):
    courier = register_courier(file_store)
    file_store.register_push_token(courier.id, 'token-1')
    backup = read_json(file_store.backup_path)
    primary = read_json(file_store.primary_path)
    assert backup != primary

    file_store.courier_update_availability(courier.id, False)
    file_store.register_push_token(courier.id, 'token-1')
    file_store.persist(file_store.load(), skip_if_unchanged=True)

    # any write would have turned the primary record into the backup
    assert read_json(file_store.backup_path) == backup
    assert read_json(file_store.primary_path) == primary


def test_read_only_session_rejects_writes(file_store):
    with file_store.session(read_only=True) as session:
        with pytest.raises(RuntimeError):
            session.add_user(DEFAULT_USERS[0])
