"""Request-scoped accessors for process-wide state."""

from fastapi import HTTPException, Request

from lardigital.whatsapp.runtime import Runtime


def get_runtime(request: Request) -> Runtime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="pipeline not started")
    return runtime
