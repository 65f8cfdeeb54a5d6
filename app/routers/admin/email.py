from fastapi import APIRouter, Depends, Path, Query, Request, status
from starlette.concurrency import run_in_threadpool

from app.schemas.notification_job_schemas import (
    NotificationDefaultsRequest,
    NotificationJobItem,
    NotificationJobStats,
    serialize_jobs,
)
from app.services.document_expiry import (
    DocumentExpirySupervisor,
    get_document_expiry_supervisor,
)
from app.utils.responses import ResponseBuilder

email_router = APIRouter()


@email_router.get(
    "/stats",
    response_model=None,
    status_code=status.HTTP_200_OK,
    summary="Get notification job counts",
    description="Count notification jobs in every delivery state, plus the total.",
)
async def get_job_stats(
    request: Request,
    supervisor: DocumentExpirySupervisor = Depends(get_document_expiry_supervisor),
):
    stats = await supervisor.get_job_stats()

    return ResponseBuilder.success(
        request=request,
        data=NotificationJobStats(**stats).model_dump(by_alias=True),
        message="Notification job statistics retrieved successfully",
    )


@email_router.get(
    "/jobs",
    response_model=None,
    status_code=status.HTTP_200_OK,
    summary="List recent notification jobs",
    description="Most recently attempted jobs first; jobs never attempted come last.",
)
async def get_recent_jobs(
    request: Request,
    limit: int = Query(50, ge=1, le=500, description="Maximum jobs to return"),
    supervisor: DocumentExpirySupervisor = Depends(get_document_expiry_supervisor),
):
    jobs = await supervisor.get_recent_jobs(limit)

    return ResponseBuilder.success(
        request=request,
        data=serialize_jobs(jobs),
        message=f"Retrieved {len(jobs)} notification jobs",
        meta={"limit": limit},
    )


@email_router.post(
    "/jobs/{job_id}/retry",
    response_model=None,
    status_code=status.HTTP_200_OK,
    summary="Retry a failed notification job",
    description="Move a failed job back to retry-eligible and send it immediately. "
    "The attempt count is preserved.",
)
async def retry_job(
    request: Request,
    job_id: int = Path(..., ge=1, description="Notification job ID"),
    supervisor: DocumentExpirySupervisor = Depends(get_document_expiry_supervisor),
):
    result = await supervisor.retry_job(job_id)
    job = result["job"]
    outcome = result["outcome"].value

    return ResponseBuilder.success(
        request=request,
        data={
            "outcome": outcome,
            "job": (
                NotificationJobItem.model_validate(job).model_dump(by_alias=True)
                if job
                else None
            ),
        },
        message=f"Retry of job {job_id} finished with outcome '{outcome}'",
    )


@email_router.post(
    "/scan",
    response_model=None,
    status_code=status.HTTP_200_OK,
    summary="Run a scan and dispatch now",
    description="Run one scheduler tick out of band and return its report.",
)
async def trigger_scan(
    request: Request,
    supervisor: DocumentExpirySupervisor = Depends(get_document_expiry_supervisor),
):
    report = await supervisor.trigger_scan_now()

    if report.error:
        return ResponseBuilder.error(
            request=request,
            message="Document expiry scan failed",
            error_code="SCAN_FAILED",
            data=report.to_dict(),
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    return ResponseBuilder.success(
        request=request,
        data=report.to_dict(),
        message="Document expiry scan completed",
    )


@email_router.post(
    "/test",
    response_model=None,
    status_code=status.HTTP_200_OK,
    summary="Check the email configuration",
    description="Verify the mail server connection and send a test email to the admin addresses.",
)
async def test_email_setup(
    request: Request,
    supervisor: DocumentExpirySupervisor = Depends(get_document_expiry_supervisor),
):
    result = await supervisor.check_email_setup()

    if not result["success"]:
        return ResponseBuilder.error(
            request=request,
            message=f"Email configuration test failed: {result['error']}",
            error_code="EMAIL_TEST_FAILED",
            data=result,
            status_code=status.HTTP_502_BAD_GATEWAY,
        )

    return ResponseBuilder.success(
        request=request,
        data=result,
        message="Test email sent successfully",
    )


@email_router.get(
    "/scheduler",
    response_model=None,
    status_code=status.HTTP_200_OK,
    summary="Get scheduler status",
)
async def get_scheduler_status(
    request: Request,
    supervisor: DocumentExpirySupervisor = Depends(get_document_expiry_supervisor),
):
    return ResponseBuilder.success(
        request=request,
        data=supervisor.status(),
        message="Scheduler status retrieved successfully",
    )


@email_router.post(
    "/scheduler/start",
    response_model=None,
    status_code=status.HTTP_200_OK,
    summary="Start the scheduler loop",
)
async def start_scheduler(
    request: Request,
    supervisor: DocumentExpirySupervisor = Depends(get_document_expiry_supervisor),
):
    started = await run_in_threadpool(supervisor.start)

    return ResponseBuilder.success(
        request=request,
        data=supervisor.status(),
        message="Scheduler started" if started else "Scheduler was already running",
    )


@email_router.post(
    "/scheduler/stop",
    response_model=None,
    status_code=status.HTTP_200_OK,
    summary="Stop the scheduler loop",
    description="Prevent further ticks. A tick already in progress is allowed to finish.",
)
async def stop_scheduler(
    request: Request,
    supervisor: DocumentExpirySupervisor = Depends(get_document_expiry_supervisor),
):
    stopped = await run_in_threadpool(supervisor.stop)

    return ResponseBuilder.success(
        request=request,
        data=supervisor.status(),
        message="Scheduler stopped" if stopped else "Scheduler was not running",
    )


@email_router.get(
    "/defaults",
    response_model=None,
    status_code=status.HTTP_200_OK,
    summary="Get default notification thresholds",
)
async def get_notification_defaults(
    request: Request,
    supervisor: DocumentExpirySupervisor = Depends(get_document_expiry_supervisor),
):
    return ResponseBuilder.success(
        request=request,
        data={"thresholds": supervisor.get_notification_defaults()},
        message="Notification defaults retrieved successfully",
    )


@email_router.put(
    "/defaults",
    response_model=None,
    status_code=status.HTTP_200_OK,
    summary="Replace default notification thresholds",
    description="Replace the whole default set. Existing jobs are not affected.",
)
async def set_notification_defaults(
    request: Request,
    payload: NotificationDefaultsRequest,
    supervisor: DocumentExpirySupervisor = Depends(get_document_expiry_supervisor),
):
    thresholds = await supervisor.set_notification_defaults(payload.thresholds)

    return ResponseBuilder.success(
        request=request,
        data={"thresholds": thresholds},
        message="Notification defaults updated successfully",
    )
