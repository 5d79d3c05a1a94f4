"""Prefixed identifiers (job_xxxx, batch_xxxx, ...)."""

import uuid


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"
