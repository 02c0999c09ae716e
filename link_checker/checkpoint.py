"""
1.0 Checkpoint Store Module
Durable "already checked in this cycle" marks for entities and accounts.

Marks are a seen-set: applying one twice is a no-op. Entity marks are written
to disk in batches and on flush(); a mark lost before its flush only means the
entity is checked again. Label changes and account marks are written at once.

Layout:
    output/
        account_labels.json                       (account-level marks)
        123-456-7890/
            123-456-7890_checkpoints.json         (entity marks for one account)
"""

import json
import logging
import os
import threading
from datetime import datetime, timezone
from typing import Dict, List, Set

from link_checker.errors import CheckpointUnavailableError

logger = logging.getLogger(__name__)


class CheckpointStore:
    """2.0 Label backend contract, at entity and account granularity."""

    label: str

    # Entity marks (scoped to one account)
    def ensure_label(self, account_id: str) -> None:
        raise NotImplementedError

    def is_marked(self, account_id: str, key: str) -> bool:
        raise NotImplementedError

    def mark(self, account_id: str, key: str) -> None:
        raise NotImplementedError

    def flush(self, account_id: str) -> None:
        """Persist buffered entity marks of an account. Stores without a buffer need nothing."""

    def clear_account(self, account_id: str) -> None:
        raise NotImplementedError

    # Account marks (manager level)
    def account_label_exists(self) -> bool:
        raise NotImplementedError

    def ensure_account_label(self) -> None:
        raise NotImplementedError

    def is_account_marked(self, account_id: str) -> bool:
        raise NotImplementedError

    def mark_account(self, account_id: str) -> None:
        raise NotImplementedError

    def marked_accounts(self) -> List[str]:
        raise NotImplementedError

    def clear_account_marks(self) -> None:
        raise NotImplementedError


class JsonCheckpointStore(CheckpointStore):
    """
    3.0 Checkpoint store kept in JSON files under the data directory.

    In preview mode nothing is written: a missing label cannot be created and
    labels cannot be removed, both raising CheckpointUnavailableError. Marks
    applied in preview mode only live in memory.
    """

    def __init__(self, data_dir: str = "output", label: str = "linkChecker_complete", preview: bool = False,
                 flush_every: int = 100):
        self.data_dir = data_dir
        self.label = label
        self.preview = preview
        self.flush_every = max(1, flush_every)
        # Guards the manager file and the per-account lock table
        self._lock = threading.RLock()
        self._account_locks: Dict[str, threading.RLock] = {}
        self._accounts: Dict[str, Dict] = {}
        self._manager_file = os.path.join(data_dir, "account_labels.json")
        self._manager = self._read(self._manager_file, {"label_exists": False, "marked": []})

    # =========================================================================
    # 3.1 FILE HELPERS
    # =========================================================================

    def _account_file(self, account_id: str) -> str:
        return os.path.join(self.data_dir, account_id, f"{account_id}_checkpoints.json")

    @staticmethod
    def _read(path: str, default: Dict) -> Dict:
        if os.path.exists(path):
            with open(path, 'r') as f:
                state = json.load(f)
            state["marked"] = list(state.get("marked", []))
            return state
        return dict(default)

    def _write(self, path: str, state: Dict) -> None:
        if self.preview:
            return
        os.makedirs(os.path.dirname(path), exist_ok=True)
        state["label"] = self.label
        state["updated_at"] = datetime.now(timezone.utc).isoformat()
        tmp_path = path + ".tmp"
        with open(tmp_path, 'w') as f:
            json.dump(state, f, indent=2)
        os.replace(tmp_path, path)

    def _account_lock(self, account_id: str) -> threading.RLock:
        with self._lock:
            return self._account_locks.setdefault(account_id, threading.RLock())

    def _account_state(self, account_id: str) -> Dict:
        if account_id not in self._accounts:
            state = self._read(self._account_file(account_id), {"label_exists": False, "marked": []})
            state["_set"] = set(state["marked"])
            state["_dirty"] = 0
            self._accounts[account_id] = state
        return self._accounts[account_id]

    def _save_account(self, account_id: str) -> None:
        state = self._accounts[account_id]
        on_disk = {k: v for k, v in state.items() if not k.startswith("_")}
        on_disk["marked"] = sorted(state["_set"])
        self._write(self._account_file(account_id), on_disk)
        state["_dirty"] = 0

    # =========================================================================
    # 3.2 ENTITY MARKS
    # =========================================================================

    def ensure_label(self, account_id: str) -> None:
        """Create the entity label for an account if it does not exist yet."""
        with self._account_lock(account_id):
            state = self._account_state(account_id)
            if state.get("label_exists"):
                return
            if self.preview:
                raise CheckpointUnavailableError(
                    f"Label {self.label} is missing in account {account_id} and cannot be created "
                    f"in preview mode. Please run without --preview first."
                )
            state["label_exists"] = True
            self._save_account(account_id)
            logger.info(f"Created label {self.label} in account {account_id}")

    def is_marked(self, account_id: str, key: str) -> bool:
        with self._account_lock(account_id):
            return key in self._account_state(account_id)["_set"]

    def marked_keys(self, account_id: str) -> Set[str]:
        with self._account_lock(account_id):
            return set(self._account_state(account_id)["_set"])

    def mark(self, account_id: str, key: str) -> None:
        with self._account_lock(account_id):
            state = self._account_state(account_id)
            if key in state["_set"]:
                return
            state["_set"].add(key)
            state["_dirty"] += 1
            if state["_dirty"] >= self.flush_every:
                self._save_account(account_id)

    def flush(self, account_id: str) -> None:
        with self._account_lock(account_id):
            state = self._account_state(account_id)
            if state["_dirty"]:
                self._save_account(account_id)

    def clear_account(self, account_id: str) -> None:
        """Remove the label, and with it every mark, from one account."""
        with self._account_lock(account_id):
            if self.preview:
                raise CheckpointUnavailableError(
                    "Cannot remove labels in preview mode. Please run without --preview."
                )
            state = self._account_state(account_id)
            removed = len(state["_set"])
            state["_set"] = set()
            state["label_exists"] = False
            self._save_account(account_id)
            logger.info(f"Cleared {removed} marks in account {account_id}")

    # =========================================================================
    # 3.3 ACCOUNT MARKS
    # =========================================================================

    def account_label_exists(self) -> bool:
        with self._lock:
            return bool(self._manager.get("label_exists"))

    def ensure_account_label(self) -> None:
        with self._lock:
            if self._manager.get("label_exists"):
                return
            if self.preview:
                raise CheckpointUnavailableError(
                    f"Account label {self.label} is missing and cannot be created in preview mode. "
                    f"Please run without --preview first."
                )
            self._manager["label_exists"] = True
            self._write(self._manager_file, self._manager)
            logger.info(f"Created account label {self.label}")

    def is_account_marked(self, account_id: str) -> bool:
        with self._lock:
            return account_id in self._manager["marked"]

    def mark_account(self, account_id: str) -> None:
        with self._lock:
            if account_id in self._manager["marked"]:
                return
            self._manager["marked"].append(account_id)
            self._write(self._manager_file, self._manager)

    def marked_accounts(self) -> List[str]:
        with self._lock:
            return list(self._manager["marked"])

    def clear_account_marks(self) -> None:
        """Remove the account label, unmarking every account."""
        with self._lock:
            if self.preview:
                raise CheckpointUnavailableError(
                    "Cannot remove account labels in preview mode. Please run without --preview."
                )
            self._manager["marked"] = []
            self._manager["label_exists"] = False
            self._write(self._manager_file, self._manager)
            logger.info(f"Removed account label {self.label}")
