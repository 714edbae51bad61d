from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from helpdesk.dependencies.tickets import AdminActor
from helpdesk.metrics import PrometheusExporter, metrics_registry

router = APIRouter(tags=["metrics"])


@router.get("/metrics", response_class=PlainTextResponse, summary="Prometheus metrics exposition")
async def metrics(_: AdminActor) -> str:
    return PrometheusExporter(metrics_registry).export()
