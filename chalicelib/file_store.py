import json
import os
import random
import shutil
import threading
import time
from concurrent.futures import Future
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional

from chalicelib.constants.constants import STORE_FILE_NAME, STORE_BACKUP_FILE_NAME, MANAGER_ACCESS_FALLBACK
from chalicelib.models import User, Delivery, Customer
from chalicelib.snapshot import Snapshot, normalize_snapshot
from chalicelib.store import DeliveryStore, StoreSession
from chalicelib.utils.exceptions import StorageFailed, ValidationException
from chalicelib.utils.logger import logger

DEFAULT_DATA_DIR = './data'


class FileSession(StoreSession):
    """
    Works on a snapshot, every write derives a new one.
    The store decides what to do with the final snapshot when the session ends
    """

    def __init__(self, snapshot: Snapshot, read_only: bool = False):
        self.snapshot = snapshot
        self.read_only = read_only

    def _check_writable(self):
        if self.read_only:
            raise RuntimeError('read only session can not be modified')

    def list_users(self) -> List[User]:
        return list(self.snapshot.users)

    def get_user(self, user_id: str) -> Optional[User]:
        return self.snapshot.find_user(user_id)

    def add_user(self, user: User) -> None:
        self._check_writable()
        self.snapshot = self.snapshot.with_user(user)

    def save_user(self, user: User, previous: User) -> None:
        self._check_writable()
        if user != previous:
            self.snapshot = self.snapshot.with_user(user)

    def list_deliveries(self) -> List[Delivery]:
        return list(self.snapshot.deliveries)

    def get_delivery(self, delivery_id: str) -> Optional[Delivery]:
        return self.snapshot.find_delivery(delivery_id)

    def add_delivery(self, delivery: Delivery) -> None:
        self._check_writable()
        self.snapshot = self.snapshot.with_delivery(delivery)

    def save_delivery(self, delivery: Delivery, previous: Delivery) -> None:
        self._check_writable()
        if delivery != previous:
            self.snapshot = self.snapshot.with_delivery(delivery)

    def list_customers(self) -> List[Customer]:
        return list(self.snapshot.customers)

    def save_customer(self, customer: Customer, previous: Optional[Customer]) -> None:
        self._check_writable()
        if customer != previous:
            self.snapshot = self.snapshot.with_customer(customer)


class FileStore(DeliveryStore):
    """
    Keeps the whole state in one json document.

    store.json is the primary record, store.backup.json is the previous one.
    A write goes to a temp file first and is renamed over the primary,
    the old primary becomes the backup. Loading falls back primary -> backup -> seeded defaults.
    Writers are serialized, the in-memory snapshot is replaced only after the write succeeded.
    """
    default_manager_access = MANAGER_ACCESS_FALLBACK

    def __init__(self, data_dir: str = None, **kwargs):
        super().__init__(**kwargs)
        self.data_dir = Path(data_dir or os.environ.get('STORE_DATA_DIR', DEFAULT_DATA_DIR))
        self.primary_path = self.data_dir / STORE_FILE_NAME
        self.backup_path = self.data_dir / STORE_BACKUP_FILE_NAME
        self._snapshot: Optional[Snapshot] = None
        self._pending: Optional[Future] = None
        self._pending_lock = threading.Lock()
        self._write_lock = threading.RLock()
        self._last_signature: Optional[str] = None

    def close(self):
        super().close()
        with self._write_lock:
            self._snapshot = None
            self._last_signature = None

    @contextmanager
    def session(self, read_only: bool = False):
        if read_only:
            yield FileSession(self.load(), read_only=True)
            return
        with self._write_lock:
            current = self.load()
            session = FileSession(current)
            yield session
            if session.snapshot is not current:
                self.persist(session.snapshot, skip_if_unchanged=True)
                self._snapshot = session.snapshot

    # Loading

    def load(self) -> Snapshot:
        """
        Returns the cached snapshot. The first callers share one read of the disk
        """
        snapshot = self._snapshot
        if snapshot is not None:
            return snapshot

        with self._pending_lock:
            if self._snapshot is not None:
                return self._snapshot
            pending = self._pending
            owner = pending is None
            if owner:
                pending = self._pending = Future()

        if not owner:
            logger.debug('load ::: waiting for the load in flight')
            return pending.result()

        try:
            snapshot = self._read_and_normalize()
            self._snapshot = snapshot
            pending.set_result(snapshot)
            return snapshot
        except Exception as error:
            pending.set_exception(error)
            raise
        finally:
            with self._pending_lock:
                self._pending = None

    def _read_and_normalize(self) -> Snapshot:
        logger.info(f'_read_and_normalize ::: loading store from {self.data_dir}')
        first_init = False
        snapshot = self._read_record(self.primary_path, 'primary')
        if snapshot is None:
            snapshot = self._read_record(self.backup_path, 'backup')
            if snapshot is not None:
                self._restore_primary_from_backup()
        if snapshot is None:
            logger.warning('_read_and_normalize ::: no readable record, starting from seeded defaults')
            snapshot = Snapshot()
            first_init = True

        normalized, changed = normalize_snapshot(snapshot, first_init)
        if changed or first_init:
            self.persist(normalized)
        else:
            self._last_signature = normalized.signature()
        logger.info(f'_read_and_normalize ::: {len(normalized.users)} users, '
                    f'{len(normalized.deliveries)} deliveries, {len(normalized.customers)} customers')
        return normalized

    @staticmethod
    def _read_record(path: Path, label: str) -> Optional[Snapshot]:
        try:
            raw = path.read_text(encoding='utf-8')
        except FileNotFoundError:
            logger.info(f'_read_record ::: {label} record {path} does not exist')
            return None
        except (OSError, UnicodeDecodeError) as error:
            logger.warning(f'_read_record ::: {label} record {path} is not readable: {error}')
            return None

        if not raw.strip():
            logger.warning(f'_read_record ::: {label} record {path} is empty')
            return None
        try:
            return Snapshot.from_dict(json.loads(raw))
        except (ValueError, ValidationException) as error:
            logger.warning(f'_read_record ::: {label} record {path} is malformed: {error}')
            return None

    def _restore_primary_from_backup(self):
        temp_path = self._temp_path()
        try:
            shutil.copyfile(self.backup_path, temp_path)
            os.replace(temp_path, self.primary_path)
            logger.info('_restore_primary_from_backup ::: primary record restored from backup')
        except OSError as error:
            logger.error(f'_restore_primary_from_backup ::: could not restore primary record: {error}')
            self._remove_quietly(temp_path)

    # Writing

    def _temp_path(self) -> Path:
        return self.data_dir / f'store-{int(time.time() * 1000)}-{random.randint(0, 1000000)}.tmp'

    @staticmethod
    def _remove_quietly(path: Path):
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as error:
            logger.warning(f'_remove_quietly ::: could not remove {path}: {error}')

    def persist(self, snapshot: Snapshot, skip_if_unchanged: bool = False):
        """
        Raise StorageFailed when the snapshot could not be written,
        the primary record is then restored from the backup if it went missing
        """
        signature = snapshot.signature()
        if skip_if_unchanged and signature == self._last_signature and self.primary_path.exists():
            logger.debug('persist ::: snapshot unchanged, write skipped')
            return

        payload = json.dumps(snapshot.to_dict(), indent=2, ensure_ascii=False)
        temp_path = self._temp_path()
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            with open(temp_path, 'w', encoding='utf-8') as temp_file:
                temp_file.write(payload)
                temp_file.flush()
                os.fsync(temp_file.fileno())
            self._remove_quietly(self.backup_path)
            try:
                os.replace(self.primary_path, self.backup_path)
            except FileNotFoundError:
                logger.debug('persist ::: no primary record yet, nothing to back up')
            os.replace(temp_path, self.primary_path)
        except OSError as error:
            logger.error(f'persist ::: could not write {self.primary_path}: {error}')
            self._remove_quietly(temp_path)
            if not self.primary_path.exists() and self.backup_path.exists():
                try:
                    os.replace(self.backup_path, self.primary_path)
                except OSError as restore_error:
                    logger.error(f'persist ::: could not restore primary record from backup: {restore_error}')
            raise StorageFailed(f'could not persist store: {error}') from error

        self._last_signature = signature
        logger.info(f'persist ::: {len(snapshot.users)} users, {len(snapshot.deliveries)} deliveries written')
