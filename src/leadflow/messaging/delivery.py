"""Communication log for WhatsApp messages and their delivery status."""

import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

KNOWN_STATUSES = ("sent", "delivered", "read", "failed")


@dataclass
class MessageRecord:
    """One inbound or outbound message."""
    direction: str  # "outbound" | "inbound"
    phone: str
    body: str
    lead_id: Optional[str] = None
    provider_message_id: Optional[str] = None
    channel: str = "whatsapp"
    status: str = "sent"
    error: Optional[Dict[str, Any]] = None
    created_at: datetime = field(default_factory=datetime.now)
    status_times: Dict[str, str] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "direction": self.direction,
            "phone": self.phone,
            "body": self.body,
            "lead_id": self.lead_id,
            "provider_message_id": self.provider_message_id,
            "channel": self.channel,
            "status": self.status,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "status_times": self.status_times,
        }


class MessageLog:
    """Thread-safe message log, optionally mirrored to a JSON file."""

    def __init__(self, data_path: Optional[Path] = None):
        self.data_path = Path(data_path) if data_path else None
        self.records: List[MessageRecord] = []
        self._lock = threading.Lock()

    def _save_data(self):
        if not self.data_path:
            return
        self.data_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.data_path, 'w') as f:
            json.dump([r.to_dict() for r in self.records], f, indent=2)

    def record(self, record: MessageRecord) -> MessageRecord:
        with self._lock:
            self.records.append(record)
            self._save_data()
        return record

    def record_outbound(
        self,
        phone: str,
        body: str,
        lead_id: Optional[str] = None,
        provider_message_id: Optional[str] = None
    ) -> MessageRecord:
        return self.record(MessageRecord(
            direction="outbound",
            phone=phone,
            body=body,
            lead_id=lead_id,
            provider_message_id=provider_message_id,
        ))

    def record_inbound(
        self,
        phone: str,
        body: str,
        lead_id: Optional[str] = None,
        provider_message_id: Optional[str] = None
    ) -> MessageRecord:
        return self.record(MessageRecord(
            direction="inbound",
            phone=phone,
            body=body,
            lead_id=lead_id,
            provider_message_id=provider_message_id,
            status="received",
        ))

    def find(self, provider_message_id: str) -> Optional[MessageRecord]:
        with self._lock:
            for record in self.records:
                if record.provider_message_id == provider_message_id:
                    return record
        return None

    def update_status(
        self,
        provider_message_id: str,
        status: str,
        timestamp: Optional[datetime] = None,
        error: Optional[Dict[str, Any]] = None
    ) -> Optional[MessageRecord]:
        """Apply a gateway status update; unknown ids and statuses are ignored."""
        if status not in KNOWN_STATUSES:
            logger.info(f"Unknown WhatsApp status: {status}")
            return None

        record = self.find(provider_message_id)
        if record is None:
            logger.warning(f"No communication found for WhatsApp message ID: {provider_message_id}")
            return None

        with self._lock:
            record.status = status
            record.status_times[status] = (timestamp or datetime.now()).isoformat()
            if status == "failed":
                record.error = error
            self._save_data()

        logger.info(f"Updated message {record.id} status to {status}")
        return record

    def for_lead(self, lead_id: str) -> List[MessageRecord]:
        with self._lock:
            return [r for r in self.records if r.lead_id == str(lead_id)]
