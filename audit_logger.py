import csv
import json
import os
import threading
from datetime import datetime

from config import AUDIT_LOG_PATH


class AuditLogger:
    """
    Appends connection lifecycle and moderation events (connects, logins,
    forced logouts, disconnects, call logs) to a CSV audit trail.
    """

    HEADER = ["Timestamp", "Event", "ConnectionID", "UserID", "Details"]

    def __init__(self, filepath=AUDIT_LOG_PATH):
        self.filepath = filepath
        self.lock = threading.Lock()
        self._initialized = False

    def _initialize_file(self):
        """Creates the CSV file and writes the header if it doesn't exist."""
        file_exists = os.path.exists(self.filepath)
        os.makedirs(os.path.dirname(os.path.abspath(self.filepath)), exist_ok=True)
        if not file_exists or os.path.getsize(self.filepath) == 0:
            with open(self.filepath, "a", newline="", encoding="utf-8") as f:
                csv.writer(f).writerow(self.HEADER)
        self._initialized = True

    def log_event(self, event, connection_id=None, user_id=None, details=None):
        """Appends one event row to the audit trail."""
        row = [
            datetime.now().isoformat(),
            event,
            connection_id or "N/A",
            user_id or "N/A",
            json.dumps(details, default=str) if details is not None else "",
        ]
        with self.lock:
            if not self._initialized:
                self._initialize_file()
            with open(self.filepath, "a", newline="", encoding="utf-8") as f:
                writer = csv.writer(f, quoting=csv.QUOTE_ALL)
                writer.writerow(row)


# Create a single, global instance to be used by the entire application
audit_log = AuditLogger()
