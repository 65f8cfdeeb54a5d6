import asyncio

from app.celery import celery
from app.services.document_expiry import DocumentExpirySupervisor
from app.utils.logging import get_logger

logger = get_logger()


@celery.task(bind=True, max_retries=3, default_retry_delay=60)
def document_expiry_notifier_task(self, request_id: str):
    """
    Daily document expiry tick for deployments that schedule with celery beat.

    Runs at 8:00 AM business time to:
    1. Create pending jobs for every newly due (document, threshold) pair
    2. Send pending and retry-eligible jobs, recording the outcome of each

    The worker builds a fresh supervisor per run and adopts the persisted
    defaults, so updates made through the admin API apply here too.

    Args:
        request_id: Request ID for tracking purposes
    """
    return asyncio.run(_async_document_expiry_notifier(request_id))


async def _async_document_expiry_notifier(request_id: str):
    logger_ctx = logger.bind(request_id=request_id)
    logger_ctx.info("Starting document expiry notifier task")

    supervisor = DocumentExpirySupervisor.from_settings()
    await supervisor.load_persisted_defaults()
    report = await supervisor.run_tick("celery_beat")

    if report.error:
        logger_ctx.error(f"Document expiry notifier task failed: {report.error}")
        return {"success": False, "error": report.error, "request_id": request_id}

    logger_ctx.info("Document expiry notifier task completed")
    return {"success": True, "request_id": request_id, **report.to_dict()}
