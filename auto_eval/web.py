"""HTTP adapter: multipart ``/api/submitEvaluation`` on FastAPI."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncContextManager, Callable

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.datastructures import FormData, UploadFile

from auto_eval.audit import AuditDispatcher, build_entry
from auto_eval.config import EvaluatorConfig, load_env_file
from auto_eval.errors import EvaluationError
from auto_eval.models import EvaluationRequest, InvocationContext, PhotoUpload, Role
from auto_eval.normalization import normalize_text, parse_price
from auto_eval.pipeline.orchestrator import (
    EvaluationPipeline,
    build_audit_dispatcher,
    open_pipeline,
)

logger = logging.getLogger(__name__)

ENDPOINT = "/api/submitEvaluation"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, X-Session-Id",
}

PipelineFactory = Callable[..., AsyncContextManager[EvaluationPipeline]]


def _first(form: FormData, name: str) -> str:
    """First text value for a repeated field; file parts are ignored."""
    for value in form.getlist(name):
        if isinstance(value, str):
            return value
    return ""


def _photos(form: FormData) -> list[PhotoUpload]:
    photos = []
    for value in form.getlist("photos"):
        if not isinstance(value, UploadFile):
            continue
        photos.append(
            PhotoUpload(
                filename=value.filename or "photo",
                size=value.size or 0,
                content_type=value.content_type or "",
                stream=value.file,
            )
        )
    return photos


def parse_submission(form: FormData) -> EvaluationRequest:
    """Build the typed request once; every field is single-valued after this."""
    return EvaluationRequest(
        role=Role.parse(_first(form, "role")),
        zip_code=normalize_text(_first(form, "zip")),
        repair_skill=normalize_text(_first(form, "repairSkill")),
        year=normalize_text(_first(form, "year")),
        make=normalize_text(_first(form, "make")),
        model=normalize_text(_first(form, "model")),
        condition_notes=_first(form, "conditionNotes"),
        vin=normalize_text(_first(form, "vin")) or None,
        listing_url=normalize_text(_first(form, "listingURL")) or None,
        asking_price=parse_price(_first(form, "price") or None),
        photos=_photos(form),
    )


def _invocation_context(request: Request, form: FormData | None = None) -> InvocationContext:
    forwarded = request.headers.get("x-forwarded-for", "")
    ip = forwarded.split(",")[0].strip() or (request.client.host if request.client else None)
    session_id = request.headers.get("x-session-id") or (
        _first(form, "sessionId") if form is not None else ""
    )
    return InvocationContext(
        endpoint=ENDPOINT,
        method=request.method,
        session_id=session_id or None,
        user_agent=request.headers.get("user-agent"),
        ip=ip,
    )


def _json(status: int, body: dict[str, Any]) -> JSONResponse:
    return JSONResponse(body, status_code=status, headers=CORS_HEADERS)


def create_app(
    config: EvaluatorConfig | None = None,
    *,
    pipeline_factory: PipelineFactory = open_pipeline,
    audit: AuditDispatcher | None = None,
) -> FastAPI:
    if config is None:
        load_env_file()
        config = EvaluatorConfig.from_env()
    dispatcher = audit or build_audit_dispatcher(config)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        try:
            yield
        finally:
            await dispatcher.drain()

    app = FastAPI(title="Vehicle Deal Evaluator", version="0.1.0", lifespan=lifespan)
    app.state.audit = dispatcher

    @app.api_route(
        ENDPOINT, methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
    )
    async def submit_evaluation(request: Request) -> Response:
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=CORS_HEADERS)
        if request.method != "POST":
            return _json(405, {"error": "Method not allowed"})

        try:
            form = await request.form()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Form parse error: %s", exc)
            context = _invocation_context(request)
            body = {"error": "Form parse error"}
            dispatcher.submit(build_entry(context, None, body, 400))
            return _json(400, body)

        context = _invocation_context(request, form)
        try:
            submission = parse_submission(form)
        except EvaluationError as exc:
            body = {"error": exc.message}
            raw_fields = {k: _first(form, k) for k in form.keys() if k != "photos"}
            dispatcher.submit(build_entry(context, raw_fields, body, exc.status))
            return _json(exc.status, body)

        try:
            async with pipeline_factory(config, audit=dispatcher) as pipeline:
                report = await pipeline.evaluate(submission, context)
        except EvaluationError as exc:
            return _json(exc.status, {"error": exc.message})
        except Exception:
            logger.exception("Evaluation failed for session %s", context.session_id)
            return _json(500, {"error": "Evaluation failed."})
        return _json(200, {"report": report.to_dict()})

    return app


def main() -> None:
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
