"""
Keyed store of transfer sessions.

Mutations of one transfer are serialized by a per-transfer asyncio.Lock;
operations on different transfers never wait on each other, and a rejected
transition for one transfer leaves every other session untouched.
Optionally persists to a JSON file so paused transfers survive a restart.
"""

import asyncio
import json
import logging
import os
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from ..core.errors import TransferNotFoundError
from ..core.transfer_state import TransferState, TransferStatus

PERSIST_PERCENT_STEP = 5.0
PERSIST_BYTES_STEP = 10 * 1024 * 1024
DEFAULT_MAX_AGE = timedelta(days=7)

_CLEANUP_STATUSES = (
    TransferStatus.COMPLETED,
    TransferStatus.CANCELLED,
    TransferStatus.FAILED,
)


class TransferSessionStore:
    """Хранилище состояний передач с блокировкой на уровне transfer_id."""

    def __init__(
        self,
        state_file: Optional[Union[str, os.PathLike]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.state_file = Path(state_file) if state_file else None
        self.logger = logger or logging.getLogger("airlink_audit.session_store")
        self._states: Dict[str, TransferState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._registry_lock = asyncio.Lock()
        self._file_lock = asyncio.Lock()
        self._persisted_bytes: Dict[str, int] = {}

    # === Lookup ===

    def get(self, transfer_id: str) -> Optional[TransferState]:
        return self._states.get(transfer_id)

    def all(self) -> List[TransferState]:
        return list(self._states.values())

    def resumable(self) -> List[TransferState]:
        return [s for s in self._states.values() if s.is_resumable]

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, transfer_id: str) -> bool:
        return transfer_id in self._states

    # === Locking ===

    async def _lock_for(self, transfer_id: str) -> asyncio.Lock:
        async with self._registry_lock:
            lock = self._locks.get(transfer_id)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[transfer_id] = lock
            return lock

    async def _mutate(
        self,
        transfer_id: str,
        transition: Callable[[TransferState], TransferState],
        persist: bool = True,
    ) -> TransferState:
        lock = await self._lock_for(transfer_id)
        async with lock:
            current = self._states.get(transfer_id)
            if current is None:
                raise TransferNotFoundError(transfer_id)
            updated = transition(current)
            self._states[transfer_id] = updated
        if persist:
            await self._persist()
        return updated

    # === Operations ===

    async def create(
        self,
        transfer_id: str,
        file_path: str,
        total_bytes: int,
        device_id: str,
        connection_method: str,
        metadata: Optional[dict] = None,
    ) -> TransferState:
        """Зарегистрировать новую передачу в состоянии pending."""
        lock = await self._lock_for(transfer_id)
        async with lock:
            if transfer_id in self._states:
                raise ValueError(f"Transfer already registered: {transfer_id}")
            state = TransferState(
                transfer_id=transfer_id,
                file_path=file_path,
                total_bytes=total_bytes,
                device_id=device_id,
                connection_method=connection_method,
                metadata=dict(metadata or {}),
            )
            self._states[transfer_id] = state
        await self._persist()
        self.logger.debug(f"Registered transfer {transfer_id} ({total_bytes} bytes)")
        return state

    async def save(self, state: TransferState) -> TransferState:
        """Сохранить готовый снимок (например, восстановленный извне)."""
        lock = await self._lock_for(state.transfer_id)
        async with lock:
            self._states[state.transfer_id] = state
        await self._persist()
        return state

    async def start(self, transfer_id: str) -> TransferState:
        return await self._mutate(transfer_id, lambda s: s.start())

    async def update_progress(self, transfer_id: str, bytes_transferred: int) -> TransferState:
        """Обновить прогресс. На диск пишется каждые 5% или 10 MiB."""
        state = await self._mutate(
            transfer_id, lambda s: s.update_progress(bytes_transferred), persist=False
        )
        if self._should_persist(state):
            await self._persist()
        return state

    async def pause(self, transfer_id: str) -> TransferState:
        state = await self._mutate(transfer_id, lambda s: s.pause())
        self.logger.info(f"Transfer paused: {transfer_id} at {state.bytes_transferred} bytes")
        return state

    async def resume(self, transfer_id: str) -> TransferState:
        state = await self._mutate(transfer_id, lambda s: s.resume())
        self.logger.info(f"Transfer resumed: {transfer_id} from {state.bytes_transferred} bytes")
        return state

    async def complete(self, transfer_id: str) -> TransferState:
        state = await self._mutate(transfer_id, lambda s: s.complete())
        self.logger.info(f"Transfer completed: {transfer_id}")
        return state

    async def fail(self, transfer_id: str, error: str, can_retry: bool = False) -> TransferState:
        state = await self._mutate(transfer_id, lambda s: s.fail(error, can_retry))
        self.logger.warning(f"Transfer failed: {transfer_id} - {error} (retry={can_retry})")
        return state

    async def cancel(self, transfer_id: str) -> TransferState:
        state = await self._mutate(transfer_id, lambda s: s.cancel())
        self.logger.info(f"Transfer cancelled: {transfer_id}")
        return state

    async def retry(self, transfer_id: str) -> TransferState:
        """Создать новую попытку; старая запись остаётся как история."""
        lock = await self._lock_for(transfer_id)
        async with lock:
            current = self._states.get(transfer_id)
            if current is None:
                raise TransferNotFoundError(transfer_id)
            attempt = current.retry()
        new_lock = await self._lock_for(attempt.transfer_id)
        async with new_lock:
            self._states[attempt.transfer_id] = attempt
        await self._persist()
        self.logger.info(f"Transfer {transfer_id} retried as {attempt.transfer_id}")
        return attempt

    async def remove(self, transfer_id: str) -> bool:
        lock = await self._lock_for(transfer_id)
        async with lock:
            removed = self._states.pop(transfer_id, None) is not None
            self._persisted_bytes.pop(transfer_id, None)
        async with self._registry_lock:
            if self._locks.get(transfer_id) is lock and not lock.locked():
                del self._locks[transfer_id]
        if removed:
            await self._persist()
        return removed

    async def cleanup_old(self, max_age: timedelta = DEFAULT_MAX_AGE) -> int:
        """Удалить завершённые/отменённые/упавшие передачи старше max_age."""
        cutoff = datetime.now() - max_age
        stale = [
            s.transfer_id
            for s in self._states.values()
            if s.status in _CLEANUP_STATUSES and s.last_updated < cutoff
        ]
        for transfer_id in stale:
            self._states.pop(transfer_id, None)
            self._persisted_bytes.pop(transfer_id, None)
            lock = self._locks.get(transfer_id)
            if lock is not None and not lock.locked():
                del self._locks[transfer_id]
        if stale:
            await self._persist()
            self.logger.info(f"Cleaned up {len(stale)} old transfers")
        return len(stale)

    # === Persistence ===

    def _should_persist(self, state: TransferState) -> bool:
        last = self._persisted_bytes.get(state.transfer_id, 0)
        delta = state.bytes_transferred - last
        if delta >= PERSIST_BYTES_STEP:
            return True
        if state.total_bytes > 0 and delta / state.total_bytes * 100 >= PERSIST_PERCENT_STEP:
            return True
        return state.bytes_transferred == state.total_bytes

    async def _persist(self) -> None:
        if self.state_file is None:
            return
        snapshot = {tid: state.to_dict() for tid, state in self._states.items()}
        async with self._file_lock:
            try:
                await asyncio.to_thread(self._write_snapshot, snapshot)
            except OSError as e:
                self.logger.error(f"Failed to persist transfer states to {self.state_file}: {e}")
                return
        self._persisted_bytes = {
            tid: state.bytes_transferred for tid, state in self._states.items()
        }

    def _write_snapshot(self, snapshot: dict) -> None:
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.state_file.with_suffix(self.state_file.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(snapshot, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, self.state_file)

    async def load(self) -> int:
        """Загрузить состояния из файла. Битые записи пропускаются."""
        if self.state_file is None or not self.state_file.exists():
            return 0
        try:
            text = await asyncio.to_thread(self.state_file.read_text, encoding="utf-8")
            data = json.loads(text)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.error(f"Cannot read transfer states from {self.state_file}: {e}")
            return 0

        if not isinstance(data, dict):
            self.logger.error(f"Unexpected transfer state file layout in {self.state_file}")
            return 0

        loaded = 0
        for transfer_id, entry in data.items():
            try:
                state = TransferState.from_dict(entry)
            except (KeyError, TypeError, ValueError) as e:
                self.logger.warning(f"Skipping unparseable transfer state {transfer_id}: {e}")
                continue
            self._states[state.transfer_id] = state
            self._persisted_bytes[state.transfer_id] = state.bytes_transferred
            loaded += 1
        self.logger.info(f"Loaded {loaded} transfer states")
        return loaded
