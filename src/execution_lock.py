#!/usr/bin/env python
"""
Run lock for the trip completion monitor.
Keeps a manual trigger and a scheduled tick from processing the same trips at once.
"""

import json
import os
from datetime import datetime, timedelta
from typing import Any, Dict, Optional


class ExecutionLock:
    """File-based run lock with a stale-lock timeout."""

    def __init__(self, lock_name: str, timeout: int = 3600, lock_dir: str = None):
        """
        Args:
            lock_name: lock name, also the lock file stem
            timeout: seconds after which a held lock is treated as stale
            lock_dir: directory for the lock file (defaults to CREW_PAY_LOCK_DIR or cwd)
        """
        self.lock_name = lock_name
        self.timeout = timeout
        directory = lock_dir or os.getenv("CREW_PAY_LOCK_DIR", ".")
        self.lock_file = os.path.join(directory, f".{lock_name}_lock.json")

    def acquire_lock(self, process_id: str, metadata: Dict[str, Any]) -> bool:
        """Take the lock.

        Returns:
            bool: True when the lock was acquired
        """
        existing_lock = self._load_lock()

        if existing_lock:
            try:
                lock_time = datetime.fromisoformat(existing_lock.get("timestamp", ""))
            except ValueError:
                lock_time = None
            if lock_time and datetime.now() - lock_time < timedelta(seconds=self.timeout):
                return False
            print(f"⏰ Lock timed out: {existing_lock.get('process_id')}")
            if not self._take_over_stale_lock(existing_lock, process_id):
                return False

        lock_data = {
            "process_id": process_id,
            "timestamp": datetime.now().isoformat(),
            "timeout": self.timeout,
            "metadata": metadata,
        }

        # O_EXCL so two processes racing past the check above cannot both win
        try:
            fd = os.open(self.lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(lock_data, f, ensure_ascii=False, indent=2)

        print(f"🔒 Lock acquired: {process_id}")
        return True

    def release_lock(self, process_id: str) -> bool:
        existing_lock = self._load_lock()

        if not existing_lock:
            print(f"⚠️ No lock to release: {process_id}")
            return False

        if existing_lock.get("process_id") != process_id:
            print(f"❌ Lock is owned by another process: {existing_lock.get('process_id')}")
            return False

        self._remove_lock()
        print(f"🔓 Lock released: {process_id}")
        return True

    def get_lock_info(self) -> Optional[Dict[str, Any]]:
        return self._load_lock()

    def _load_lock(self) -> Optional[Dict[str, Any]]:
        return self._read_lock(self.lock_file)

    @staticmethod
    def _read_lock(path: str) -> Optional[Dict[str, Any]]:
        try:
            if os.path.exists(path):
                with open(path, "r", encoding="utf-8") as f:
                    return json.load(f)
        except (FileNotFoundError, json.JSONDecodeError):
            pass
        return None

    def _take_over_stale_lock(self, stale_lock: Dict[str, Any], process_id: str) -> bool:
        """Move the stale lock aside, or put it back if another run has replaced it since it was read."""
        stale_path = f"{self.lock_file}.{process_id}.stale"
        try:
            os.rename(self.lock_file, stale_path)
        except FileNotFoundError:
            return True

        moved = self._read_lock(stale_path)
        try:
            if moved is None or any(moved.get(k) != stale_lock.get(k) for k in ("process_id", "timestamp")):
                # another run replaced it in between; put its lock back
                try:
                    os.link(stale_path, self.lock_file)
                except FileExistsError:
                    pass
                print(f"⚠️ Lock changed during takeover: {(moved or {}).get('process_id')}")
                return False
            return True
        finally:
            os.remove(stale_path)

    def _remove_lock(self):
        try:
            if os.path.exists(self.lock_file):
                os.remove(self.lock_file)
        except FileNotFoundError:
            pass
