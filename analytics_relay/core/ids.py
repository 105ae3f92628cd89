import uuid


def gen_event_id() -> str:
    return str(uuid.uuid4())


def gen_worker_id(prefix: str = "relay") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"
