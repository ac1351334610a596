"""
Render task handler: fetch a source clip and produce a vertical 1080x1920 video.
"""

import logging

from clipworker.constants import QueueName
from clipworker.exceptions import ProcessingError
from clipworker.types.job import HandlerContext, HandlerResult
from clipworker.types.payloads import RenderInput
from clipworker.worker.handlers.registry import parse_payload, register_handler, workspace

logger = logging.getLogger(__name__)


@register_handler(QueueName.RENDER)
async def handle_render(context: HandlerContext) -> HandlerResult:
    """
    Download ``clip_url`` (or fall back to a placeholder clip), convert it to
    the vertical frame and upload it to ``<user_id>/<job_id>.mp4``.
    """
    task_input = parse_payload(RenderInput, context.payload)
    collaborators = context.collaborators
    media = collaborators.media
    job_id = context.parent_job_id or context.record_id

    with workspace(context, collaborators.work_dir) as work_dir:
        source = work_dir / f"{job_id}.mp4"
        vertical = work_dir / f"vertical_{job_id}.mp4"

        try:
            await media.download(task_input.clip_url, source)
        except ProcessingError as e:
            logger.warning(
                "Download failed, rendering placeholder",
                extra={"task_id": str(context.record_id), "error": str(e)},
            )
            await media.placeholder(source)

        await media.to_vertical(source, vertical)

        storage_path = f"{context.artifact_owner}/{job_id}.mp4"
        url = await collaborators.storage.upload(vertical, storage_path)

    logger.info("Render task finished", extra={"task_id": str(context.record_id), "url": url})
    return HandlerResult(output={"path": storage_path, "url": url})
