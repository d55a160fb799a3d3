import hmac
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import (
    APIRouter,
    Depends,
    FastAPI,
    HTTPException,
    Query,
    Request,
    Response,
    status,
)
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict, ValidationError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from .context import AppContext
from .models import MAX_MESSAGE_LENGTH
from .pipeline import default_pipeline
from .storage import DatastoreError, get_db, insert_message, list_messages


VERSION = "v1.0.0"
BANNER = "{version: '%s', message: 'Hey, I am up and alive!'}\n" % VERSION


# ---------- Pydantic Models ----------


class MessagePayload(BaseModel):
    message: str = ""


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    message: str
    created_at: datetime


# ---------- Helpers ----------


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def _reject(request: Request, status_code: int, detail: str, result: str) -> HTTPException:
    get_context(request).metrics.inc_submit_result(result)
    request.state.log_extra = getattr(request.state, "log_extra", {})
    request.state.log_extra.update({"result": result})
    return HTTPException(status_code=status_code, detail=detail)


def require_access_key(
    request: Request,
    access_key: Optional[str] = Query(default=None),
) -> None:
    if not access_key:
        raise _reject(
            request,
            status.HTTP_401_UNAUTHORIZED,
            "Access key is required to send a message",
            "unauthorized",
        )

    expected = get_context(request).settings.ACCESS_KEY
    if not hmac.compare_digest(access_key.encode("utf-8"), expected.encode("utf-8")):
        raise _reject(
            request,
            status.HTTP_401_UNAUTHORIZED,
            "Access key is not valid",
            "unauthorized",
        )


async def read_payload(request: Request) -> MessagePayload:
    raw_body = await request.body()
    try:
        payload = MessagePayload.model_validate_json(raw_body)
    except ValidationError:
        raise _reject(request, status.HTTP_400_BAD_REQUEST, "Unable to read body!", "bad_request")

    if not payload.message:
        raise _reject(request, status.HTTP_400_BAD_REQUEST, "Message is required!", "bad_request")
    if len(payload.message) > MAX_MESSAGE_LENGTH:
        raise _reject(request, status.HTTP_400_BAD_REQUEST, "Message is too long!", "bad_request")
    return payload


# ---------- Endpoints ----------

router = APIRouter()


@router.get("/")
def index():
    return Response(
        content=BANNER,
        media_type="application/json; charset=utf-8",
        headers={"X-Content-Type-Options": "nosniff"},
    )


@router.get("/health")
def health(context: AppContext = Depends(get_context)):
    if context.healthy:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)


# Dependencies resolve in declaration order: credential, then body, then datastore.
@router.post("/add")
def add_message(
    request: Request,
    _: None = Depends(require_access_key),
    payload: MessagePayload = Depends(read_payload),
    db: Session = Depends(get_db),
):
    context = get_context(request)
    try:
        insert_message(db, payload.message)
    except DatastoreError:
        context.metrics.inc_submit_result("error")
        request.state.log_extra.update({"result": "error"})
        raise

    context.metrics.inc_submit_result("created")
    request.state.log_extra.update({"result": "created"})
    return PlainTextResponse(f"{payload.message} is inserted.\n")


@router.api_route("/add", methods=["GET", "HEAD", "PUT", "PATCH", "DELETE", "OPTIONS"])
def add_message_wrong_method():
    return PlainTextResponse("Only POST method is allowed!\n")


@router.get("/messages", response_model=list[MessageOut])
def get_messages(db: Session = Depends(get_db)):
    return [MessageOut.model_validate(m) for m in list_messages(db)]


@router.get("/metrics")
def metrics(context: AppContext = Depends(get_context)):
    return PlainTextResponse(content=context.metrics.render(), media_type="text/plain")


# ---------- Application ----------


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return PlainTextResponse(
        f"{exc.detail}\n",
        status_code=exc.status_code,
        headers=exc.headers,
    )


async def datastore_exception_handler(request: Request, exc: DatastoreError):
    return PlainTextResponse(
        f"{exc}\n", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
    )


def create_app(context: AppContext) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_: FastAPI):
        try:
            yield
        finally:
            context.datastore.dispose()

    app = FastAPI(title="Message Board", version=VERSION, lifespan=lifespan)
    app.state.context = context

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(DatastoreError, datastore_exception_handler)

    app.include_router(router)
    default_pipeline(context).install(app)
    return app
