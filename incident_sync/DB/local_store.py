# local_store.py
# Description: Asynchronous facade over RecordsDatabase.
#
# Every call runs on one dedicated worker thread, so the event loop never blocks on SQLite,
# writes are serialized, and a ':memory:' database keeps a single thread-local connection.
#
# Imports
import asyncio
import functools
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
from .Records_DB import LocalRecord, RecordsDatabase, StorageError
#
########################################################################################################################
#
# Functions:

class LocalRecordStore:
    """Coroutine API for the local durable store. Create instances with `await LocalRecordStore.open(...)`."""

    def __init__(self, db: RecordsDatabase, executor: ThreadPoolExecutor):
        self._db = db
        self._executor = executor
        self._closed = False

    @classmethod
    async def open(cls, db_path: Union[str, Path], client_id: str) -> "LocalRecordStore":
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="records-db")
        loop = asyncio.get_running_loop()
        try:
            db = await loop.run_in_executor(executor, functools.partial(RecordsDatabase, db_path, client_id))
        except BaseException:
            executor.shutdown(wait=False)
            raise
        return cls(db, executor)

    @property
    def client_id(self) -> str:
        return self._db.client_id

    @property
    def db_path_str(self) -> str:
        return self._db.db_path_str

    async def _run(self, func: Callable, *args, **kwargs) -> Any:
        if self._closed:
            raise StorageError("Local record store is closed.")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(func, *args, **kwargs))

    async def add(self, kind: str, payload: Dict[str, Any], captured_at: Optional[int] = None) -> int:
        return await self._run(self._db.add_record, kind, payload, captured_at)

    async def get(self, local_key: int) -> Optional[LocalRecord]:
        return await self._run(self._db.get_record, local_key)

    async def list_pending(self, kind: Optional[str] = None, include_flagged: bool = True) -> List[LocalRecord]:
        return await self._run(self._db.list_pending, kind, include_flagged)

    async def count_pending(self, kind: Optional[str] = None, include_flagged: bool = True) -> int:
        return await self._run(self._db.count_pending, kind, include_flagged)

    async def list_all(self, kind: Optional[str] = None) -> List[LocalRecord]:
        return await self._run(self._db.list_all, kind)

    async def mark_synced(self, local_key: int, remote_id: str) -> bool:
        return await self._run(self._db.mark_synced, local_key, remote_id)

    async def record_failure(self, local_key: int, error: str, permanent: bool = False) -> bool:
        return await self._run(self._db.record_sync_failure, local_key, error, permanent)

    async def requeue(self, local_key: int) -> bool:
        return await self._run(self._db.clear_review_flag, local_key)

    async def delete(self, local_key: int) -> bool:
        return await self._run(self._db.delete_record, local_key)

    async def close(self):
        if self._closed:
            return
        try:
            await self._run(self._db.close_connection)
        finally:
            self._closed = True
            self._executor.shutdown(wait=False)
            logger.debug(f"Closed local record store at {self._db.db_path_str}.")

#
# End of local_store.py
########################################################################################################################
