"""
FastAPI front-desk service.

Exposes the EnrolmentQueue over HTTP (`/api/...`) and pushes board and
student updates to displays over a WebSocket (`/ws`). Optionally bridges the
same queue onto MQTT so the Tk display board and desk CLI can use it.
"""

import argparse
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI, Request, WebSocket
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

from .config import DeskSettings, get_settings
from .errors import QueueError, ValidationError
from .events import EventBus
from .manager import EnrolmentQueue
from .websocket import ListenerHub

logger = logging.getLogger(__name__)


# === Request bodies ===
# Required fields are optional here on purpose: missing name/program/text must
# come back as the desk's own 400 error, not a framework 422.


class CheckinRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    program: Optional[str] = None
    student_id: Optional[str] = Field(default=None, alias="studentId")
    email: Optional[str] = None
    staff: Optional[str] = None


class StaffRequest(BaseModel):
    staff: Optional[str] = None


class CompleteRequest(StaffRequest):
    note: Optional[str] = None


class HoldRequest(StaffRequest):
    ticket: Optional[str] = None
    reason: Optional[str] = None


class NoteRequest(StaffRequest):
    text: Optional[str] = None
    ticket: Optional[str] = None


class FormRequest(StaffRequest):
    data: Any = None
    ticket: Optional[str] = None


def build_router(queue: EnrolmentQueue) -> APIRouter:
    router = APIRouter(prefix="/api")

    @router.post("/checkin")
    async def checkin(body: Optional[CheckinRequest] = None) -> Dict[str, Any]:
        body = body or CheckinRequest()
        return queue.checkin(
            body.name, body.program, student_id=body.student_id, email=body.email, staff=body.staff
        )

    @router.post("/department/{step}/start-next")
    async def start_next(step: str, body: Optional[StaffRequest] = None) -> Dict[str, Any]:
        body = body or StaffRequest()
        return queue.start_next(step, staff=body.staff)

    @router.post("/department/{step}/complete")
    async def complete(step: str, body: Optional[CompleteRequest] = None) -> Dict[str, Any]:
        body = body or CompleteRequest()
        return queue.complete(step, staff=body.staff, note=body.note)

    @router.post("/department/{step}/hold")
    async def hold(step: str, body: Optional[HoldRequest] = None) -> Dict[str, Any]:
        body = body or HoldRequest()
        return queue.hold(step, ticket=body.ticket, staff=body.staff, reason=body.reason)

    @router.post("/department/{step}/return/{ticket}")
    async def return_ticket(step: str, ticket: str, body: Optional[StaffRequest] = None) -> Dict[str, Any]:
        body = body or StaffRequest()
        return queue.return_ticket(step, ticket, staff=body.staff)

    @router.post("/department/{step}/skip")
    async def skip(step: str, body: Optional[StaffRequest] = None) -> Dict[str, Any]:
        body = body or StaffRequest()
        return queue.skip(step, staff=body.staff)

    @router.post("/department/{step}/note")
    async def note(step: str, body: Optional[NoteRequest] = None) -> Dict[str, Any]:
        body = body or NoteRequest()
        return queue.add_note(step, body.text, ticket=body.ticket, staff=body.staff)

    @router.post("/department/{step}/form")
    async def save_form(step: str, body: Optional[FormRequest] = None) -> Dict[str, Any]:
        body = body or FormRequest()
        return queue.save_form(step, body.data, ticket=body.ticket, staff=body.staff)

    @router.get("/department/{step}/serving")
    async def serving(step: str) -> Dict[str, Any]:
        return queue.serving(step)

    @router.get("/department/{step}/holds")
    async def holds(step: str) -> Dict[str, Any]:
        return queue.holds(step)

    @router.get("/status")
    async def status() -> Dict[str, Any]:
        return queue.status()

    @router.get("/student/{ticket}")
    async def student(ticket: str) -> Dict[str, Any]:
        return queue.student(ticket)

    @router.get("/logs")
    async def logs() -> list:
        return queue.logs()

    @router.get("/logs.csv")
    async def logs_csv() -> Response:
        return Response(
            content=queue.logs_csv(),
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": 'attachment; filename="queue-logs.csv"'},
        )

    return router


def create_app(settings: Optional[DeskSettings] = None, queue: Optional[EnrolmentQueue] = None) -> FastAPI:
    settings = settings or get_settings()
    queue = queue or EnrolmentQueue.from_settings(settings, bus=EventBus())
    hub = ListenerHub(queue)
    hub.attach(queue.bus)

    if settings.webhook_url:
        from .webhook import WebhookNotifier

        WebhookNotifier.from_settings(settings).attach(queue.bus)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        bridge = None
        if settings.mqtt_enabled:
            from .manager import MqttDeskService
            from .mqtt_client import MqttClient

            mqtt_client = MqttClient(client_id="enrolment-server", host=settings.mqtt_host, port=settings.mqtt_port)
            mqtt_client.start()
            bridge = MqttDeskService(mqtt=mqtt_client, queue=queue, namespace=settings.namespace)
            bridge.start()
            logger.info(f"MQTT bridge on {settings.mqtt_host}:{settings.mqtt_port} ns={settings.namespace}")
        try:
            yield
        finally:
            if bridge is not None:
                bridge.stop()
                bridge.mqtt.stop()

    app = FastAPI(title="Enrolment Queue", version="0.1.0", lifespan=lifespan)
    app.state.queue = queue
    app.state.hub = hub

    if settings.cors_origins_list:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins_list,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(QueueError)
    async def queue_error_handler(request: Request, exc: QueueError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        # Wrong types or a body that is not JSON get the same 400 envelope as missing fields.
        fields = [".".join(str(p) for p in err.get("loc", ()) if p != "body") for err in exc.errors()]
        error = ValidationError("malformed request", fields=[f for f in fields if f])
        return JSONResponse(status_code=error.status_code, content=error.to_body())

    app.include_router(build_router(queue))

    @app.websocket("/ws")
    async def listener(websocket: WebSocket) -> None:
        await hub.serve(websocket)

    return app


def main() -> None:
    import uvicorn

    settings = get_settings()

    parser = argparse.ArgumentParser(description="Enrolment queue HTTP/WebSocket service")
    parser.add_argument("--host", default=settings.host)
    parser.add_argument("--port", type=int, default=settings.port)
    parser.add_argument("--mqtt", action="store_true", default=settings.mqtt_enabled, help="bridge onto MQTT")
    parser.add_argument("--mqtt-host", default=settings.mqtt_host)
    parser.add_argument("--mqtt-port", type=int, default=settings.mqtt_port)
    parser.add_argument("--namespace", default=settings.namespace)
    parser.add_argument("--ticket-scheme", choices=("sequential", "rotating"), default=settings.ticket_scheme)
    args = parser.parse_args()

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    settings = settings.model_copy(
        update={
            "host": args.host,
            "port": args.port,
            "mqtt_enabled": args.mqtt,
            "mqtt_host": args.mqtt_host,
            "mqtt_port": args.mqtt_port,
            "namespace": args.namespace,
            "ticket_scheme": args.ticket_scheme,
        }
    )

    print(f"[server] enrolment queue on http://{args.host}:{args.port} (WebSocket /ws)")
    uvicorn.run(create_app(settings), host=args.host, port=args.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
