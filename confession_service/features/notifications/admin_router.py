"""Operator API for the notification delivery pipeline.

Dead-letter Endpoints:
- GET /admin/notifications/dead-letter-jobs - List failed jobs (filtered, paginated)
- POST /admin/notifications/dead-letter-jobs/replay - Bulk replay
- GET /admin/notifications/dead-letter-jobs/{jobId} - Inspect a failed job
- POST /admin/notifications/dead-letter-jobs/{jobId}/replay - Replay one job
- DELETE /admin/notifications/dead-letter-jobs/{jobId} - Remove a failed job

Queue Endpoints:
- GET /admin/notifications/queue/stats - Job counts per state

Template Endpoints:
- POST /admin/notifications/templates/preview - Render a template version with sample variables
- PUT /admin/notifications/templates/{templateKey}/rollout - Promote a version or start a canary

All endpoints require the admin role.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Path, Query

from confession_service.core.exceptions import NotFoundException, TemplateConfigurationError
from confession_service.core.settings import get_app_settings
from confession_service.features.notifications.canary import DEFAULT_VERSION
from confession_service.features.notifications.dead_letter import build_filter
from confession_service.features.notifications.dependencies import (
    AdminUserDep,
    DeadLetterServiceDep,
    TemplateRegistryDep,
    TemplateRendererDep,
)
from confession_service.features.notifications.schemas import (
    BulkReplayRequest,
    BulkReplayResponse,
    DeadLetterJobDetailResponse,
    DeadLetterJobResponse,
    DeadLetterListResponse,
    DeleteDeadLetterResponse,
    QueueStatsResponse,
    RenderedTemplate,
    ReplayAuditResponse,
    ReplayRequest,
    ReplayResponse,
    TemplatePreview,
    TemplatePreviewRequest,
    TemplatePreviewResponse,
    TemplateRolloutResponse,
    TemplateRolloutUpdate,
)

router = APIRouter(
    prefix="/admin/notifications",
    tags=["notifications-admin"],
)

JobIdPath = Annotated[str, Path(alias="jobId", min_length=1, max_length=100)]


# ============================================================================
# Dead-letter jobs
# ============================================================================


@router.get(
    "/dead-letter-jobs",
    response_model=DeadLetterListResponse,
    response_model_by_alias=True,
    summary="List dead-lettered delivery jobs",
    description="""
List jobs that exhausted their attempt budget, newest failure first.

**Query Parameters:**
- `failedAfter` / `failedBefore`: ISO-8601 bounds on the failure time (naive values are UTC)
- `minRetries`: Minimum attempts made
- `search`: Case-insensitive match on job id, failure reason or recipient
- `page`, `limit`: Pagination (limit 1-100)
""",
    responses={422: {"description": "Invalid filter combination"}},
)
async def list_dead_letter_jobs(
    admin: AdminUserDep,
    service: DeadLetterServiceDep,
    failed_after: Annotated[datetime | None, Query(alias="failedAfter")] = None,
    failed_before: Annotated[datetime | None, Query(alias="failedBefore")] = None,
    min_retries: Annotated[int | None, Query(alias="minRetries", ge=0)] = None,
    search: Annotated[str | None, Query(max_length=200)] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> DeadLetterListResponse:
    filters = build_filter(
        failed_after=failed_after,
        failed_before=failed_before,
        min_attempts=min_retries,
        search=search,
    )
    entries, total = await service.list_failed(filters, page=page, limit=limit)
    return DeadLetterListResponse(
        jobs=[DeadLetterJobResponse.model_validate(entry, from_attributes=True) for entry in entries],
        total=total,
        page=page,
        limit=limit,
    )


@router.post(
    "/dead-letter-jobs/replay",
    response_model=BulkReplayResponse,
    response_model_by_alias=True,
    summary="Replay matching dead-lettered jobs",
    description="""
Replay up to `limit` dead-lettered jobs matching the filters. Each replay
creates a new job with a fresh attempt counter; the dead-letter entries are
left untouched.
""",
)
async def bulk_replay_dead_letter_jobs(
    payload: BulkReplayRequest,
    admin: AdminUserDep,
    service: DeadLetterServiceDep,
) -> BulkReplayResponse:
    filters = build_filter(
        failed_after=payload.failed_after,
        failed_before=payload.failed_before,
        min_attempts=payload.min_retries,
        search=payload.search,
    )
    job_ids, failed = await service.bulk_replay(
        filters,
        limit=payload.limit,
        reason=payload.reason,
        actor_id=admin.user_id,
    )
    return BulkReplayResponse(success=True, replayed=len(job_ids), job_ids=job_ids, failed=failed)


@router.get(
    "/dead-letter-jobs/{jobId}",
    response_model=DeadLetterJobDetailResponse,
    response_model_by_alias=True,
    summary="Inspect a dead-lettered job",
    responses={404: {"description": "Dead-letter job not found"}},
)
async def get_dead_letter_job(
    job_id: JobIdPath,
    admin: AdminUserDep,
    service: DeadLetterServiceDep,
) -> DeadLetterJobDetailResponse:
    entry = await service.get(job_id)
    replays = await service.list_replays(job_id)
    base = DeadLetterJobResponse.model_validate(entry, from_attributes=True)
    return DeadLetterJobDetailResponse(
        **base.model_dump(),
        payload=dict(entry.payload),
        replays=[ReplayAuditResponse.model_validate(r, from_attributes=True) for r in replays],
    )


@router.post(
    "/dead-letter-jobs/{jobId}/replay",
    response_model=ReplayResponse,
    response_model_by_alias=True,
    summary="Replay a dead-lettered job",
    description="""
Enqueue a new delivery job with the original payload. The dead-letter entry
is not modified and can be replayed again; every replay is recorded in the
job's audit trail.
""",
    responses={404: {"description": "Dead-letter job not found"}},
)
async def replay_dead_letter_job(
    job_id: JobIdPath,
    admin: AdminUserDep,
    service: DeadLetterServiceDep,
    payload: ReplayRequest | None = None,
) -> ReplayResponse:
    result = await service.replay(
        job_id,
        payload.reason if payload else None,
        actor_id=admin.user_id,
    )
    return ReplayResponse(success=result.success, message=result.message, job_id=result.job_id)


@router.delete(
    "/dead-letter-jobs/{jobId}",
    response_model=DeleteDeadLetterResponse,
    response_model_by_alias=True,
    summary="Delete a dead-lettered job",
    responses={404: {"description": "Dead-letter job not found"}},
)
async def delete_dead_letter_job(
    job_id: JobIdPath,
    admin: AdminUserDep,
    service: DeadLetterServiceDep,
) -> DeleteDeadLetterResponse:
    await service.delete(job_id, actor_id=admin.user_id)
    return DeleteDeadLetterResponse(success=True, job_id=job_id)


@router.get(
    "/queue/stats",
    response_model=QueueStatsResponse,
    response_model_by_alias=True,
    summary="Delivery queue statistics",
)
async def get_queue_stats(
    admin: AdminUserDep,
    service: DeadLetterServiceDep,
) -> QueueStatsResponse:
    stats = await service.stats()
    return QueueStatsResponse.model_validate(stats, from_attributes=True)


# ============================================================================
# Templates
# ============================================================================


@router.post(
    "/templates/preview",
    response_model=TemplatePreviewResponse,
    response_model_by_alias=True,
    summary="Preview a template version",
    description="""
Render a template version with the supplied variables. When `version` is
omitted the currently active version is used. Missing variables and render
errors are reported in the preview instead of failing the request.
""",
    responses={404: {"description": "Template or version not found"}},
)
async def preview_template(
    payload: TemplatePreviewRequest,
    admin: AdminUserDep,
    registry: TemplateRegistryDep,
    renderer: TemplateRendererDep,
) -> TemplatePreviewResponse:
    policy = registry.policy_for(payload.template_key)
    version = payload.version or (policy.active_version if policy else DEFAULT_VERSION)
    template = registry.find(payload.template_key, version)
    if template is None:
        raise NotFoundException(
            detail=f"Template or version not found: {payload.template_key} {version}",
            type="template-not-found",
            extra={"template_key": payload.template_key, "version": version},
        )

    context = {
        "app_url": get_app_settings().app_url.rstrip("/"),
        "year": datetime.now(UTC).year,
        **payload.vars,
    }
    missing = renderer.missing_vars(template, context)
    preview = TemplatePreview(
        template_key=payload.template_key,
        version=template.version,
        lifecycle_state=str(template.state),
        missing_vars=missing,
        required_vars=list(template.required_vars),
    )
    if missing:
        preview.validation_errors = [f"Missing required template variable: {var}" for var in missing]
        return TemplatePreviewResponse(ok=False, preview=preview)

    try:
        rendered = renderer.render(payload.template_key, template, context)
    except TemplateConfigurationError as exc:
        preview.validation_errors = [exc.detail]
        return TemplatePreviewResponse(ok=False, preview=preview)

    preview.rendered = RenderedTemplate(subject=rendered.subject, html=rendered.html, text=rendered.text)
    return TemplatePreviewResponse(ok=True, preview=preview)


@router.put(
    "/templates/{templateKey}/rollout",
    response_model=TemplateRolloutResponse,
    response_model_by_alias=True,
    summary="Change a template's rollout",
    description="""
- `activate`: promote `version` to active; the previous active version is deprecated and any canary ends.
- `canary`: serve `version` to `canaryPercent` of recipients next to the active version.
""",
    responses={404: {"description": "Template or version not found"}},
)
async def update_template_rollout(
    template_key: Annotated[str, Path(alias="templateKey", min_length=1, max_length=100)],
    payload: TemplateRolloutUpdate,
    admin: AdminUserDep,
    registry: TemplateRegistryDep,
) -> TemplateRolloutResponse:
    try:
        if payload.action == "activate":
            policy = registry.set_active_version(
                template_key,
                payload.version,
                reason=payload.reason,
                actor_id=admin.user_id,
            )
        else:
            policy = registry.start_canary(
                template_key,
                payload.version,
                payload.canary_percent or 0,
                reason=payload.reason,
                actor_id=admin.user_id,
            )
    except TemplateConfigurationError as exc:
        raise NotFoundException(detail=exc.detail, type="template-not-found", extra=exc.extra) from exc

    return TemplateRolloutResponse(
        template_key=template_key,
        active_version=policy.active_version,
        canary_version=policy.canary_version,
        canary_percent=policy.canary_percent,
    )
