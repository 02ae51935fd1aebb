import threading

import pytest

from worthy.exceptions import PersistenceError, ReferentialIntegrityError
from worthy.storage import SQLiteStorage


@pytest.fixture
def storage():
    storage = SQLiteStorage()
    storage.execute("CREATE TABLE hits (worker INTEGER NOT NULL, n INTEGER NOT NULL)")
    yield storage
    storage.close()


class TestSQLiteStorage:
    def test_handle_is_usable_from_other_threads(self, storage):
        def write(worker):
            for n in range(25):
                with storage.transaction():
                    storage.execute("INSERT INTO hits (worker, n) VALUES (?, ?)", (worker, n))

        workers = [threading.Thread(target=write, args=(worker,)) for worker in range(4)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        assert storage.scalar("SELECT COUNT(*) FROM hits") == 100
        assert storage.scalar("SELECT COUNT(DISTINCT worker) FROM hits") == 4

    def test_failed_transaction_rolls_back(self, storage):
        with pytest.raises(PersistenceError):
            with storage.transaction():
                storage.execute("INSERT INTO hits (worker, n) VALUES (1, 1)")
                storage.execute("INSERT INTO hits (worker, n) VALUES (1, NULL)")

        assert storage.scalar("SELECT COUNT(*) FROM hits") == 0

    def test_nested_transactions_join_the_outer_one(self, storage):
        with pytest.raises(RuntimeError):
            with storage.transaction():
                storage.execute("INSERT INTO hits (worker, n) VALUES (1, 1)")
                with storage.transaction():
                    storage.execute("INSERT INTO hits (worker, n) VALUES (1, 2)")
                raise RuntimeError("abort")

        assert storage.scalar("SELECT COUNT(*) FROM hits") == 0

    def test_oversized_integer_is_a_persistence_error(self, storage):
        with pytest.raises(PersistenceError):
            storage.execute("INSERT INTO hits (worker, n) VALUES (?, ?)", (1, 2**70))

    def test_foreign_key_violation(self, storage):
        storage.execute("CREATE TABLE parents (id TEXT PRIMARY KEY)")
        storage.execute("CREATE TABLE children (parent_id TEXT NOT NULL REFERENCES parents(id))")

        with pytest.raises(ReferentialIntegrityError):
            storage.execute("INSERT INTO children (parent_id) VALUES ('missing')")
