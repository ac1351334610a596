"""
Edit task handler: apply fit, padding, watermark and caption settings to a
rendered clip.
"""

import logging

from clipworker.constants import QueueName
from clipworker.db.repository import JobRepository
from clipworker.exceptions import JobValidationError, ProcessingError
from clipworker.types.job import HandlerContext, HandlerResult
from clipworker.types.payloads import EditInput
from clipworker.worker.handlers.registry import parse_payload, register_handler, workspace

logger = logging.getLogger(__name__)


async def resolve_source_url(context: HandlerContext, task_input: EditInput) -> str:
    """The explicit source URL, else the parent job's rendered result."""
    if task_input.source_url:
        return task_input.source_url

    if context.parent_job_id is not None:
        async with context.session_factory() as session:
            parent = await JobRepository(session).get_job(context.parent_job_id)
        if parent is not None and parent.result and parent.result.get("url"):
            return parent.result["url"]

    raise JobValidationError("No source video URL for edit task")


@register_handler(QueueName.EDIT)
async def handle_edit(context: HandlerContext) -> HandlerResult:
    task_input = parse_payload(EditInput, context.payload)
    source_url = await resolve_source_url(context, task_input)
    collaborators = context.collaborators
    media = collaborators.media

    with workspace(context, collaborators.work_dir) as work_dir:
        source = work_dir / "source.mp4"
        edited = work_dir / "edited.mp4"
        thumbnail = work_dir / "thumbnail.jpg"

        await media.download(source_url, source)
        await media.apply_edit(source, edited, task_input.settings)

        base_path = f"{context.artifact_owner}/edits/{context.record_id}"
        url = await collaborators.storage.upload(edited, f"{base_path}.mp4")

        # thumbnails are best effort
        thumbnail_url = None
        try:
            await media.thumbnail(edited, thumbnail)
            thumbnail_url = await collaborators.storage.upload(
                thumbnail, f"{base_path}_thumb.jpg", content_type="image/jpeg"
            )
        except ProcessingError as e:
            logger.info(
                "Thumbnail skipped",
                extra={"task_id": str(context.record_id), "error": str(e)},
            )

    output = {"url": url}
    if thumbnail_url:
        output["thumbnail_url"] = thumbnail_url
    return HandlerResult(output=output)
