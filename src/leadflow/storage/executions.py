"""Mirror of workflow execution records."""

import json
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Any

logger = logging.getLogger(__name__)


class ExecutionStore(ABC):
    """Receives a snapshot of an execution on every state change."""

    @abstractmethod
    def save(self, execution) -> None:
        pass

    @abstractmethod
    def load_all(self) -> List[Dict[str, Any]]:
        """Return every stored record as a dict."""
        pass


class JsonExecutionStore(ExecutionStore):
    """Persist execution records to a JSON file."""

    def __init__(self, storage_path: str):
        self.storage_path = Path(storage_path)
        self.records: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._load_data()

    def _load_data(self):
        """Load execution records from storage."""
        if not self.storage_path.exists():
            return
        with open(self.storage_path, 'r') as f:
            data = json.load(f)
        for record in data.get('executions', []):
            self.records[record['id']] = record

    def _save_data(self):
        """Save execution records to storage."""
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            'executions': list(self.records.values()),
            'updated_at': datetime.now().isoformat(),
        }
        with open(self.storage_path, 'w') as f:
            json.dump(data, f, indent=2, default=str)

    def save(self, execution) -> None:
        with self._lock:
            self.records[execution.id] = execution.to_dict()
            self._save_data()

    def load_all(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self.records.values())

    def get(self, execution_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self.records.get(execution_id)
