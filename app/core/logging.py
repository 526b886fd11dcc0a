import logging
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger
from contextvars import ContextVar

# Correlation id of the HTTP request being served
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Resume id of the ingestion run being executed (background tasks outlive the request)
record_id_var: ContextVar[str] = ContextVar("record_id", default="")

class CustomJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)

        for field, var in (("request_id", request_id_var), ("record_id", record_id_var)):
            value = var.get()
            if value and not log_record.get(field):
                log_record[field] = value

        if not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat()

        log_record["level"] = (log_record.get("level") or record.levelname).upper()

def setup_logging(level: int = logging.INFO):
    """JSON logs on stderr. Safe to call more than once."""
    root = logging.getLogger()
    if any(isinstance(h.formatter, CustomJsonFormatter) for h in root.handlers):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(CustomJsonFormatter("%(timestamp) %(level) %(name) %(message)"))
    root.addHandler(handler)
    root.setLevel(level)

    # PyMuPDF and the HTTP stack are chatty at INFO
    for noisy in ("uvicorn.access", "sqlalchemy.engine", "fitz", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
