from __future__ import annotations

import hmac

from fastapi import Header

from publisher.config import settings

UNAUTHORIZED_WORKER = "Unauthorized worker"


class WorkerAuthError(RuntimeError):
    pass


def verify_worker_key(supplied: str | None, expected: str | None) -> bool:
    # No configured secret means the check is disabled.
    if not expected:
        return True
    if not supplied:
        return False
    return hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


def require_worker_key(
    x_worker_key: str | None = Header(default=None, alias="X-Worker-Key"),
) -> None:
    if not verify_worker_key(x_worker_key, settings.PUBLISH_WORKER_KEY):
        raise WorkerAuthError(UNAUTHORIZED_WORKER)
