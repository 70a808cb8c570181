from fastapi import APIRouter

router = APIRouter(tags=["system"])


@router.get("/healthz", summary="Liveness probe")
def healthz() -> dict[str, str]:
    """Simple liveness probe that load balancers and monitors can call."""

    return {"status": "ok"}
