# core/audit.py
import json
import logging
import os

from veaportal.models.ledger_model import DeveloperSplitAuditEntry

logger = logging.getLogger("vea.audit")


def record_developer_split(entry: DeveloperSplitAuditEntry, path: str) -> bool:
    """
    Append one JSON line per settlement to the developer split log.
    Never raises; returns False when the line could not be written.
    """
    try:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "a", encoding="utf-8") as fh:
            fh.write(json.dumps(entry.to_wire(), ensure_ascii=False) + "\n")
        return True
    except Exception as e:
        logger.error(f"Failed to record developer split audit for {entry.reference}: {e}", exc_info=True)
        return False
