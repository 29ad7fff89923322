from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path
from typing import Optional

logger = logging.getLogger("friendlai.worker.identity")


def load_worker_id(explicit: Optional[str], id_file: str) -> str:
    """Return the worker's stable id.

    ``explicit`` (``WORKER_ID``) wins. Otherwise the id stored in
    ``id_file`` is used, and the file is created with a fresh uuid4 the
    first time a worker starts on this machine.
    """
    if explicit:
        return explicit

    path = Path(id_file)
    if path.exists():
        data = json.loads(path.read_text(encoding="utf-8") or "{}")
        if data.get("id"):
            return str(data["id"])

    worker_id = str(uuid.uuid4())
    path.write_text(json.dumps({"id": worker_id}), encoding="utf-8")
    logger.info(
        "Generated new worker id",
        extra={"event": "worker.id.generated", "worker_id": worker_id, "path": str(path)},
    )
    return worker_id
