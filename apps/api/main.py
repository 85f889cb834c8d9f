"""FastAPI service for presets, tables, exports, AI assistance and billing."""

from __future__ import annotations

import importlib.metadata
import json
import logging
import os
import threading
import time
import uuid
from pathlib import Path
from typing import Annotated, Any
from urllib.parse import quote

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field
from starlette.concurrency import run_in_threadpool

from core.accounts.models import UserRecord
from core.accounts.plans import PRICING_PLANS, Plan
from core.ai.client import (
    DEFAULT_MODEL,
    DEFAULT_OLLAMA_URL,
    DEFAULT_TIMEOUT_SECONDS,
    OllamaCompletionClient,
    TextCompletionClient,
)
from core.ai.flows import convert_file, generate_preset_from_description
from core.billing.paddle import (
    SIGNATURE_HEADER,
    TEST_HEADER,
    UnknownPriceError,
    decide,
    parse_event,
    verify_signature,
)
from core.presets.models import COLUMN_TYPES, ParsedPreset, PresetIssue
from core.presets.parser import lint_preset, require_parsed_preset
from core.render.models import ExportOutput
from core.services import accounts as account_service
from core.services import presets as preset_service
from core.services import tables as table_service
from core.store.document_store import DocumentStore, JsonFileDocumentStore, MemoryDocumentStore
from core.tables.models import TableRecord
from core.utils.errors import (
    AiOutputError,
    CompletionServiceError,
    DocumentNotFoundError,
    InvalidCellValueError,
    InvalidPresetFormatError,
    PlanRequiredError,
    QuotaExceededError,
    WebhookSignatureError,
)

app = FastAPI(title="dataweaver API", version="0.1.0")
logger = logging.getLogger("dataweaver.api")

REQUEST_ID_HEADER = "X-Weaver-Request-Id"
USER_ID_HEADER = "X-Weaver-User-Id"
USER_NAME_HEADER = "X-Weaver-User-Name"
USER_EMAIL_HEADER = "X-Weaver-User-Email"

_DEFAULT_MAX_UPLOAD_BYTES = 5 * 1024 * 1024
_PADDLE_SECRET_ENV = "PADDLE_WEBHOOK_SECRET"


class ApiRequestError(Exception):
    def __init__(
        self,
        *,
        status_code: int,
        error_code: str,
        message: str,
        detail: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.message = message
        self.detail = detail or {}


class ParsePresetRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    preset_string: str


class SavePresetRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    preset_string: str
    name: str = preset_service.MANUAL_PRESET_NAME
    description: str = preset_service.MANUAL_PRESET_DESCRIPTION
    tags: list[str] = Field(default_factory=list)


class PublishPresetRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    description: str = ""
    tags: str = ""


class CreateTableRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    preset_id: str = Field(min_length=1)


class AddRowRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    values: dict[str, Any] = Field(default_factory=dict)


class UpdateCellRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    column: str = Field(min_length=1)
    value: Any = None


class PopulateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    columns: list[str] = Field(default_factory=list)
    prompt: str = ""


class GeneratePresetRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    description: str = Field(min_length=1)


_store_lock = threading.Lock()
_store_cache: DocumentStore | None = None
_store_cache_key: str | None = None


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Ensure every response has a request id header."""

    request_id = uuid.uuid4().hex
    request.state.request_id = request_id
    try:
        response = await call_next(request)
    except Exception:  # noqa: BLE001
        _log_event(
            logging.ERROR,
            "error",
            request_id,
            error_code="INTERNAL_ERROR",
            status_code=500,
            failure_stage="middleware",
        )
        response = _error_response(
            status_code=500,
            error_code="INTERNAL_ERROR",
            message="internal server error",
            request_id=request_id,
            detail={"path": request.url.path},
        )
    response.headers.setdefault(REQUEST_ID_HEADER, request_id)
    return response


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    request_id = _request_id_from_request(request)
    errors = [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg", "")}
        for error in exc.errors()
    ]
    _log_event(
        logging.ERROR,
        "error",
        request_id,
        error_code="INVALID_ARGUMENT",
        status_code=400,
        failure_stage="validate_inputs",
    )
    return _error_response(
        status_code=400,
        error_code="INVALID_ARGUMENT",
        message="request validation failed",
        request_id=request_id,
        detail={"errors": errors},
    )


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    """Liveness endpoint."""

    return {"status": "ok"}


@app.get("/v1/meta")
async def meta_v1(request: Request) -> JSONResponse:
    """Plans, column types and build metadata for clients."""

    request_id = _request_id_from_request(request)
    payload = {
        "version": app.version,
        "package_version": _package_version(),
        "commit_sha": os.getenv("WEAVER_COMMIT_SHA", "").strip() or None,
        "column_types": list(COLUMN_TYPES),
        "ai_enabled": _ai_enabled(),
        "plans": [_plan_payload(plan) for plan in PRICING_PLANS],
    }
    return JSONResponse(status_code=200, headers={REQUEST_ID_HEADER: request_id}, content=payload)


@app.post("/v1/presets/parse", response_model=None)
async def parse_preset_v1(request: Request, body: ParsePresetRequest) -> JSONResponse:
    """Parse a preset string without storing it."""

    request_id = _request_id_from_request(request)
    try:
        parsed = require_parsed_preset(body.preset_string)
        return _json_response(request_id, _parsed_payload(parsed, lint_preset(parsed)))
    except Exception as exc:  # noqa: BLE001
        return _failure_response(exc, request_id=request_id, failure_stage="parse_preset")


@app.get("/v1/presets", response_model=None)
async def list_presets_v1(request: Request) -> JSONResponse:
    request_id = _request_id_from_request(request)
    try:
        user = _require_user(request)
        presets = preset_service.list_presets(_get_store(), user.uid)
        return _json_response(
            request_id, {"presets": [preset.model_dump(mode="json") for preset in presets]}
        )
    except Exception as exc:  # noqa: BLE001
        return _failure_response(exc, request_id=request_id, failure_stage="list_presets")


@app.post("/v1/presets", response_model=None)
async def save_preset_v1(request: Request, body: SavePresetRequest) -> JSONResponse:
    """Store a manually written preset in the caller's library."""

    request_id = _request_id_from_request(request)
    try:
        user = _require_user(request)
        record, parsed, issues = preset_service.save_preset(
            _get_store(),
            user,
            body.preset_string,
            name=body.name,
            description=body.description,
            tags=body.tags,
        )
        _log_event(logging.INFO, "done", request_id, action="save_preset", preset_id=record.id)
        return _json_response(
            request_id,
            {"preset": record.model_dump(mode="json"), **_parsed_payload(parsed, issues)},
            status_code=201,
        )
    except Exception as exc:  # noqa: BLE001
        return _failure_response(exc, request_id=request_id, failure_stage="save_preset")


@app.post("/v1/presets/{preset_id}/publish", response_model=None)
async def publish_preset_v1(
    request: Request, preset_id: str, body: PublishPresetRequest
) -> JSONResponse:
    request_id = _request_id_from_request(request)
    try:
        user = _require_user(request)
        public = preset_service.publish_preset(
            _get_store(),
            user,
            preset_id,
            name=body.name,
            description=body.description,
            tags=body.tags,
        )
        _log_event(logging.INFO, "done", request_id, action="publish_preset", preset_id=preset_id)
        return _json_response(request_id, {"preset": public.model_dump(mode="json")})
    except Exception as exc:  # noqa: BLE001
        return _failure_response(exc, request_id=request_id, failure_stage="publish_preset")


@app.get("/v1/community-presets", response_model=None)
async def list_community_presets_v1(request: Request) -> JSONResponse:
    request_id = _request_id_from_request(request)
    try:
        presets = preset_service.list_community_presets(_get_store())
        return _json_response(
            request_id, {"presets": [preset.model_dump(mode="json") for preset in presets]}
        )
    except Exception as exc:  # noqa: BLE001
        return _failure_response(exc, request_id=request_id, failure_stage="list_community")


@app.post("/v1/community-presets/{preset_id}/add", response_model=None)
async def add_community_preset_v1(request: Request, preset_id: str) -> JSONResponse:
    """Copy a community preset into the caller's library."""

    request_id = _request_id_from_request(request)
    try:
        user = _require_user(request)
        copy = preset_service.add_community_preset(_get_store(), user.uid, preset_id)
        return _json_response(request_id, {"preset": copy.model_dump(mode="json")}, status_code=201)
    except Exception as exc:  # noqa: BLE001
        return _failure_response(exc, request_id=request_id, failure_stage="add_community")


@app.post("/v1/tables", response_model=None)
async def create_table_v1(request: Request, body: CreateTableRequest) -> JSONResponse:
    request_id = _request_id_from_request(request)
    try:
        user = _require_user(request)
        table = table_service.create_table(
            _get_store(), user, name=body.name, preset_id=body.preset_id
        )
        _log_event(logging.INFO, "done", request_id, action="create_table", table_id=table.id)
        return _json_response(request_id, {"table": _table_payload(table)}, status_code=201)
    except Exception as exc:  # noqa: BLE001
        return _failure_response(exc, request_id=request_id, failure_stage="create_table")


@app.get("/v1/tables/{table_id}", response_model=None)
async def get_table_v1(request: Request, table_id: str) -> JSONResponse:
    request_id = _request_id_from_request(request)
    try:
        user = _require_user(request)
        table = table_service.get_table(_get_store(), user.uid, table_id)
        return _json_response(request_id, {"table": _table_payload(table)})
    except Exception as exc:  # noqa: BLE001
        return _failure_response(exc, request_id=request_id, failure_stage="get_table")


@app.post("/v1/tables/{table_id}/rows", response_model=None)
async def add_row_v1(request: Request, table_id: str, body: AddRowRequest) -> JSONResponse:
    """Append one row; costs a credit."""

    request_id = _request_id_from_request(request)
    try:
        user = _require_user(request)
        table, user = table_service.add_row(_get_store(), user, table_id, body.values)
        return _json_response(
            request_id,
            {"table": _table_payload(table), "usage": _usage_payload(user)},
            status_code=201,
        )
    except Exception as exc:  # noqa: BLE001
        return _failure_response(exc, request_id=request_id, failure_stage="add_row")


@app.patch("/v1/tables/{table_id}/rows/{row_id}", response_model=None)
async def update_cell_v1(
    request: Request, table_id: str, row_id: str, body: UpdateCellRequest
) -> JSONResponse:
    request_id = _request_id_from_request(request)
    try:
        user = _require_user(request)
        table, user = table_service.update_cell(
            _get_store(), user, table_id, row_id, body.column, body.value
        )
        return _json_response(
            request_id, {"table": _table_payload(table), "usage": _usage_payload(user)}
        )
    except Exception as exc:  # noqa: BLE001
        return _failure_response(exc, request_id=request_id, failure_stage="update_cell")


@app.delete("/v1/tables/{table_id}/rows/{row_id}", response_model=None)
async def delete_row_v1(request: Request, table_id: str, row_id: str) -> JSONResponse:
    request_id = _request_id_from_request(request)
    try:
        user = _require_user(request)
        table, user = table_service.delete_row(_get_store(), user, table_id, row_id)
        return _json_response(
            request_id, {"table": _table_payload(table), "usage": _usage_payload(user)}
        )
    except Exception as exc:  # noqa: BLE001
        return _failure_response(exc, request_id=request_id, failure_stage="delete_row")


@app.get("/v1/tables/{table_id}/export", response_model=None)
async def export_table_v1(request: Request, table_id: str) -> Response:
    """Render the caller's table and return it as a downloadable text file."""

    request_id = _request_id_from_request(request)
    try:
        user = _require_user(request)
        output = table_service.export_table(_get_store(), user.uid, table_id)
        _log_event(
            logging.INFO,
            "done",
            request_id,
            action="export_table",
            table_id=table_id,
            row_count=output.row_count,
        )
        return _export_response(request_id, output)
    except Exception as exc:  # noqa: BLE001
        return _failure_response(exc, request_id=request_id, failure_stage="export_table")


@app.get("/v1/view/{user_id}/tables/{table_id}/export", response_model=None)
async def public_export_v1(request: Request, user_id: str, table_id: str) -> Response:
    """Export a shared table by owner and id; does not touch ``last_exported``."""

    request_id = _request_id_from_request(request)
    try:
        output = table_service.export_table(
            _get_store(), user_id, table_id, record_export=False
        )
        return _export_response(request_id, output)
    except Exception as exc:  # noqa: BLE001
        return _failure_response(exc, request_id=request_id, failure_stage="public_export")


@app.post("/v1/tables/{table_id}/populate", response_model=None)
async def populate_table_v1(request: Request, table_id: str, body: PopulateRequest) -> JSONResponse:
    """Fill empty cells of the selected columns with generated values."""

    request_id = _request_id_from_request(request)
    request_started = time.perf_counter()
    try:
        user = _require_user(request)
        client = _get_completion_client()
        _log_event(
            logging.INFO,
            "start",
            request_id,
            action="populate_table",
            table_id=table_id,
            columns=body.columns,
        )
        table, user = await run_in_threadpool(
            table_service.populate_table,
            _get_store(),
            user,
            table_id,
            columns=body.columns,
            prompt=body.prompt,
            client=client,
        )
        _log_event(
            logging.INFO,
            "done",
            request_id,
            action="populate_table",
            table_id=table_id,
            total_ms=_elapsed_ms(request_started),
        )
        return _json_response(
            request_id, {"table": _table_payload(table), "usage": _usage_payload(user)}
        )
    except Exception as exc:  # noqa: BLE001
        return _failure_response(exc, request_id=request_id, failure_stage="populate_table")


@app.post("/v1/ai/generate-preset", response_model=None)
async def generate_preset_v1(request: Request, body: GeneratePresetRequest) -> JSONResponse:
    """Draft a preset string from a natural-language description."""

    request_id = _request_id_from_request(request)
    request_started = time.perf_counter()
    try:
        _require_user(request)
        if not body.description.strip():
            raise ApiRequestError(
                status_code=400,
                error_code="INVALID_ARGUMENT",
                message="description must not be empty",
                detail={"field": "description"},
            )
        client = _get_completion_client()
        generated = await run_in_threadpool(
            generate_preset_from_description, client, body.description
        )
        _log_event(
            logging.INFO,
            "done",
            request_id,
            action="generate_preset",
            total_ms=_elapsed_ms(request_started),
        )
        return _json_response(
            request_id,
            {
                "preset_string": generated.preset_string,
                **_parsed_payload(generated.parsed, lint_preset(generated.parsed)),
            },
        )
    except Exception as exc:  # noqa: BLE001
        return _failure_response(exc, request_id=request_id, failure_stage="generate_preset")


@app.post("/v1/ai/convert", response_model=None)
async def convert_file_v1(
    request: Request,
    file: Annotated[UploadFile, File(...)],
    prompt: Annotated[str, Form()] = "",
) -> JSONResponse:
    """Convert an uploaded text file according to the caller's instructions."""

    request_id = _request_id_from_request(request)
    request_started = time.perf_counter()
    failure_stage = "init"
    try:
        failure_stage = "auth"
        user = _require_user(request)
        if not user.is_paid:
            raise PlanRequiredError(
                "AI file conversion requires a paid plan.",
                feature="convert_file",
                plan=user.subscription_plan,
            )

        failure_stage = "upload"
        max_upload_bytes = _max_upload_bytes()
        raw = _read_upload_with_limit(upload=file, max_bytes=max_upload_bytes, field_name="file")
        try:
            file_content = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ApiRequestError(
                status_code=400,
                error_code="INVALID_ARGUMENT",
                message="file must be UTF-8 text",
                detail={"field": "file", "filename": file.filename},
            ) from exc

        failure_stage = "convert"
        client = _get_completion_client()
        _log_event(
            logging.INFO,
            "start",
            request_id,
            action="convert_file",
            filename=file.filename,
            size_bytes=len(raw),
            max_upload_bytes=max_upload_bytes,
        )
        converted = await run_in_threadpool(convert_file, client, file_content, prompt)
        _log_event(
            logging.INFO,
            "done",
            request_id,
            action="convert_file",
            total_ms=_elapsed_ms(request_started),
        )
        return _json_response(
            request_id,
            {
                "converted_content": converted.converted_content,
                "file_name": converted.file_name,
            },
        )
    except Exception as exc:  # noqa: BLE001
        return _failure_response(exc, request_id=request_id, failure_stage=failure_stage)


@app.post("/v1/billing/paddle-webhook", response_model=None)
async def paddle_webhook_v1(request: Request) -> JSONResponse:
    """Verify and apply a Paddle billing event."""

    request_id = _request_id_from_request(request)
    failure_stage = "init"
    try:
        if request.headers.get(TEST_HEADER, "").lower() == "true":
            _log_event(logging.INFO, "done", request_id, action="paddle_webhook", test=True)
            return _json_response(request_id, {"message": "Test webhook received successfully"})

        failure_stage = "verify_signature"
        secret = os.getenv(_PADDLE_SECRET_ENV, "")
        if not secret:
            raise ApiRequestError(
                status_code=500,
                error_code="WEBHOOK_NOT_CONFIGURED",
                message="webhook secret is not configured",
            )
        raw_body = await request.body()
        verify_signature(raw_body, request.headers.get(SIGNATURE_HEADER), secret)

        failure_stage = "apply_event"
        event = parse_event(raw_body)
        decision = decide(event)
        message = account_service.apply_webhook_decision(_get_store(), decision)
        _log_event(
            logging.INFO,
            "done",
            request_id,
            action="paddle_webhook",
            event_type=event.event_type,
            decision=decision.action,
        )
        return _json_response(request_id, {"received": True, "message": message})
    except Exception as exc:  # noqa: BLE001
        return _failure_response(exc, request_id=request_id, failure_stage=failure_stage)


def _request_id_from_request(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if isinstance(request_id, str) and request_id:
        return request_id
    generated = uuid.uuid4().hex
    request.state.request_id = generated
    return generated


def _require_user(request: Request) -> UserRecord:
    """Resolve the caller from identity headers, creating the account on first use."""

    uid = request.headers.get(USER_ID_HEADER, "").strip()
    if not uid:
        raise ApiRequestError(
            status_code=401,
            error_code="UNAUTHORIZED",
            message="authentication required",
            detail={"header": USER_ID_HEADER},
        )
    return account_service.ensure_user(
        _get_store(),
        uid,
        display_name=request.headers.get(USER_NAME_HEADER) or None,
        email=request.headers.get(USER_EMAIL_HEADER) or None,
    )


def _get_store() -> DocumentStore:
    global _store_cache, _store_cache_key

    store_path = os.getenv("WEAVER_STORE_PATH", "").strip()
    with _store_lock:
        if _store_cache is None or _store_cache_key != store_path:
            _store_cache = (
                JsonFileDocumentStore(Path(store_path)) if store_path else MemoryDocumentStore()
            )
            _store_cache_key = store_path
        return _store_cache


def _get_completion_client() -> TextCompletionClient:
    if not _ai_enabled():
        raise ApiRequestError(
            status_code=503,
            error_code="AI_DISABLED",
            message="AI features are disabled",
        )
    return OllamaCompletionClient(
        base_url=_ollama_url(),
        model=_ai_model(),
        timeout_seconds=_ai_timeout_seconds(),
    )


def _ai_enabled() -> bool:
    raw = os.getenv("WEAVER_ENABLE_AI", "1").strip().lower()
    return raw not in {"0", "false", "off", "no"}


def _ollama_url() -> str:
    raw = os.getenv("WEAVER_OLLAMA_URL", "").strip()
    return raw or DEFAULT_OLLAMA_URL


def _ai_model() -> str:
    raw = os.getenv("WEAVER_AI_MODEL", "").strip()
    return raw or DEFAULT_MODEL


def _ai_timeout_seconds() -> float:
    raw = os.getenv("WEAVER_AI_TIMEOUT_SECONDS")
    if raw is None:
        return DEFAULT_TIMEOUT_SECONDS
    try:
        parsed = float(raw)
    except ValueError:
        return DEFAULT_TIMEOUT_SECONDS
    return parsed if parsed > 0 else DEFAULT_TIMEOUT_SECONDS


def _max_upload_bytes() -> int:
    raw = os.getenv("WEAVER_MAX_UPLOAD_BYTES")
    if raw is None:
        return _DEFAULT_MAX_UPLOAD_BYTES
    try:
        parsed = int(raw)
    except ValueError:
        return _DEFAULT_MAX_UPLOAD_BYTES
    return parsed if parsed > 0 else _DEFAULT_MAX_UPLOAD_BYTES


def _read_upload_with_limit(*, upload: UploadFile, max_bytes: int, field_name: str) -> bytes:
    chunks: list[bytes] = []
    total_size = 0

    source = upload.file
    source.seek(0)
    while True:
        chunk = source.read(1024 * 1024)
        if not chunk:
            break
        total_size += len(chunk)
        if total_size > max_bytes:
            raise ApiRequestError(
                status_code=413,
                error_code="UPLOAD_TOO_LARGE",
                message=f"{field_name} exceeds upload size limit",
                detail={
                    "field": field_name,
                    "max_bytes": max_bytes,
                    "received_bytes": total_size,
                },
            )
        chunks.append(chunk)

    source.close()
    return b"".join(chunks)


def _to_api_error(exc: Exception) -> ApiRequestError:
    """Map domain exceptions onto status codes and stable error codes."""

    if isinstance(exc, ApiRequestError):
        return exc
    if isinstance(exc, InvalidPresetFormatError):
        return ApiRequestError(
            status_code=400,
            error_code="INVALID_PRESET_FORMAT",
            message="Invalid preset format. Please check the syntax.",
            detail={"reason": str(exc)},
        )
    if isinstance(exc, InvalidCellValueError):
        return ApiRequestError(
            status_code=400,
            error_code="INVALID_CELL_VALUE",
            message=str(exc),
            detail={"column": exc.column, "column_type": exc.column_type},
        )
    if isinstance(exc, UnknownPriceError):
        return ApiRequestError(
            status_code=400,
            error_code="UNKNOWN_PRICE",
            message=str(exc),
            detail={"price_id": exc.price_id},
        )
    if isinstance(exc, DocumentNotFoundError):
        return ApiRequestError(
            status_code=404,
            error_code="NOT_FOUND",
            message=str(exc),
            detail={"path": exc.path},
        )
    if isinstance(exc, QuotaExceededError):
        return ApiRequestError(
            status_code=402,
            error_code="QUOTA_EXCEEDED",
            message=str(exc),
            detail={
                "resource": exc.resource,
                "required": exc.required,
                "available": exc.available,
            },
        )
    if isinstance(exc, PlanRequiredError):
        return ApiRequestError(
            status_code=403,
            error_code="PLAN_REQUIRED",
            message=str(exc),
            detail={"feature": exc.feature, "plan": exc.plan},
        )
    if isinstance(exc, WebhookSignatureError):
        return ApiRequestError(
            status_code=401,
            error_code="INVALID_SIGNATURE",
            message=str(exc),
            detail={"reason": exc.reason},
        )
    if isinstance(exc, AiOutputError):
        return ApiRequestError(
            status_code=502,
            error_code="AI_OUTPUT_INVALID",
            message=str(exc),
            detail={"flow": exc.flow},
        )
    if isinstance(exc, CompletionServiceError):
        detail: dict[str, Any] = {}
        if exc.status_code is not None:
            detail["upstream_status"] = exc.status_code
        return ApiRequestError(
            status_code=502,
            error_code="AI_SERVICE_ERROR",
            message=str(exc),
            detail=detail,
        )
    if isinstance(exc, ValueError):
        return ApiRequestError(
            status_code=400,
            error_code="INVALID_ARGUMENT",
            message=str(exc),
        )
    return ApiRequestError(
        status_code=500,
        error_code="INTERNAL_ERROR",
        message="internal server error",
        detail={"error": str(exc)},
    )


def _failure_response(exc: Exception, *, request_id: str, failure_stage: str) -> JSONResponse:
    api_error = _to_api_error(exc)
    level = logging.ERROR if api_error.status_code >= 500 else logging.WARNING
    _log_event(
        level,
        "error",
        request_id,
        error_code=api_error.error_code,
        status_code=api_error.status_code,
        failure_stage=failure_stage,
    )
    if api_error.status_code == 500 and not isinstance(exc, ApiRequestError):
        logger.exception("Unhandled error during %s", failure_stage, exc_info=exc)
    return _error_response(
        status_code=api_error.status_code,
        error_code=api_error.error_code,
        message=api_error.message,
        request_id=request_id,
        detail=api_error.detail,
    )


def _parsed_payload(parsed: ParsedPreset, issues: list[PresetIssue]) -> dict[str, Any]:
    return {
        "parsed": parsed.to_dict(),
        "issues": [
            {
                "kind": issue.kind,
                "message": issue.message,
                "column": issue.column,
                "token": issue.token,
            }
            for issue in issues
        ],
    }


def _table_payload(table: TableRecord) -> dict[str, Any]:
    return table.model_dump(mode="json")


def _usage_payload(user: UserRecord) -> dict[str, Any]:
    return {
        "plan": user.subscription_plan,
        "credits_used": user.credits_used,
        "storage_used": user.storage_used,
        "credits_remaining": user.credits_remaining(),
        "storage_remaining": user.storage_remaining(),
    }


def _plan_payload(plan: Plan) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "name": plan.name,
        "description": plan.description,
        "credit_limit": plan.credit_limit,
        "storage_limit": plan.storage_limit,
        "monthly_price": plan.monthly.price,
        "annual_price": plan.annual.price,
        "is_popular": plan.is_popular,
    }
    if plan.one_time is not None:
        payload["one_time"] = {"name": plan.one_time.name, "price": plan.one_time.price}
    return payload


def _export_response(request_id: str, output: ExportOutput) -> Response:
    headers = {
        REQUEST_ID_HEADER: request_id,
        "Content-Disposition": _content_disposition(output.filename),
        "X-Weaver-Row-Count": str(output.row_count),
        "X-Weaver-Incomplete-Rows": str(len(output.report.incomplete_rows)),
    }
    return Response(
        content=output.content.encode("utf-8"),
        media_type="text/plain; charset=utf-8",
        headers=headers,
    )


def _content_disposition(filename: str) -> str:
    fallback = filename.encode("ascii", "replace").decode("ascii").replace('"', "'")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"


def _json_response(
    request_id: str, payload: dict[str, Any], *, status_code: int = 200
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        headers={REQUEST_ID_HEADER: request_id},
        content=payload,
    )


def _package_version() -> str:
    try:
        return importlib.metadata.version("dataweaver")
    except importlib.metadata.PackageNotFoundError:
        return "unknown"


def _error_response(
    *,
    status_code: int,
    error_code: str,
    message: str,
    request_id: str,
    detail: dict[str, Any] | None = None,
) -> JSONResponse:
    payload_detail = dict(detail or {})
    payload_detail["request_id"] = request_id

    return JSONResponse(
        status_code=status_code,
        headers={REQUEST_ID_HEADER: request_id},
        content={
            "error_code": error_code,
            "message": message,
            "detail": payload_detail,
        },
    )


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _dump_json(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


def _log_event(level: int, event: str, request_id: str, **fields: Any) -> None:
    payload = {
        "event": event,
        "request_id": request_id,
        **fields,
    }
    logger.log(level, _dump_json(payload))
