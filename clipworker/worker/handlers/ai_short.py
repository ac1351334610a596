"""
AI short handler.

Builds a narrated short from a script: voiceover via text-to-speech, one
stock image per scene, a captioned slideshow (or a solid-colour fallback
when no images were found) and an upload per output clip. In multi-clip
mode the voiceover is split evenly across up to five clips.
"""

import logging
import math
from pathlib import Path

from clipworker.clients import Collaborators, SceneImage
from clipworker.clients.media import wrap_text
from clipworker.constants import QueueName
from clipworker.exceptions import ProcessingError
from clipworker.types.job import HandlerContext, HandlerResult
from clipworker.types.payloads import AiShortConfig, Scene
from clipworker.worker.handlers.registry import parse_payload, register_handler, workspace

logger = logging.getLogger(__name__)


def split_scenes(
    scenes: list[Scene],
    images: list[SceneImage],
    num_clips: int,
) -> list[tuple[list[Scene], list[SceneImage]]]:
    """
    Partition scenes (and their images) into ``num_clips`` consecutive groups.

    Clips past the last scene reuse the final scene; a group without images
    borrows the last available image. Image indices are made relative to the
    group.
    """
    per_clip = max(1, math.ceil(len(scenes) / num_clips))
    groups = []
    for clip_index in range(num_clips):
        start = clip_index * per_clip
        end = min(start + per_clip, len(scenes))

        if start >= len(scenes):
            clip_scenes = [scenes[-1]]
            clip_images = images[-1:]
        else:
            clip_scenes = scenes[start:max(end, start + 1)]
            clip_images = [img for img in images if start <= img.scene_index < end] or images[-1:]

        groups.append(
            (
                clip_scenes,
                [SceneImage(path=img.path, scene_index=i, text=img.text) for i, img in enumerate(clip_images)],
            )
        )
    return groups


async def build_slideshow(
    collaborators: Collaborators,
    images: list[SceneImage],
    scenes: list[Scene],
    audio: Path,
    output: Path,
    duration: float,
    work_dir: Path,
    prefix: str = "",
) -> None:
    """Render one captioned still clip per scene, concatenate and lay the voiceover under it."""
    media = collaborators.media
    scene_duration = duration / len(scenes)
    clips: list[Path] = []

    for index, scene in enumerate(scenes):
        image = next((img for img in images if img.scene_index == index), images[-1])
        clip_path = work_dir / f"{prefix}scene_clip_{index}.mp4"

        text_file = None
        wrapped = wrap_text(scene.text[:100])
        if wrapped:
            text_file = work_dir / f"{prefix}scene_{index}_text.txt"
            text_file.write_text(wrapped, encoding="utf-8")

        try:
            await media.image_clip(image.path, clip_path, scene_duration, text_file)
        except ProcessingError as e:
            logger.warning("Scene clip failed", extra={"scene": index, "error": str(e)})
            continue
        clips.append(clip_path)

    if not clips:
        raise ProcessingError("Failed to create any slideshow clips", step="slideshow")

    slideshow = work_dir / f"{prefix}slideshow.mp4"
    await media.concat(clips, slideshow, work_dir / f"{prefix}concat.txt")
    await media.mux_audio(slideshow, audio, output)


@register_handler(QueueName.AI_SHORT)
async def handle_ai_short(context: HandlerContext) -> HandlerResult:
    config = parse_payload(AiShortConfig, context.payload)
    collaborators = context.collaborators
    media = collaborators.media
    job_id = context.record_id

    logger.info(
        "AI short starting",
        extra={
            "job_id": str(job_id),
            "topic": config.topic,
            "scenes": len(config.scenes),
            "clips": config.num_clips,
        },
    )

    with workspace(context, collaborators.work_dir) as work_dir:
        audio = await collaborators.voice.synthesize(config.script, config.voice, work_dir / "voiceover.mp3")
        audio_duration = await media.probe_duration(audio) or float(config.duration)

        images: list[SceneImage] = []
        if config.scenes:
            images = await collaborators.stock_media.images_for_scenes(config.scenes, work_dir)

        urls: list[str] = []

        if config.is_multi_clip and config.scenes:
            clip_duration = audio_duration / config.num_clips
            groups = split_scenes(config.scenes, images, config.num_clips)

            for clip_index, (clip_scenes, clip_images) in enumerate(groups):
                number = clip_index + 1
                clip_audio = work_dir / f"audio_clip_{number}.mp3"
                clip_output = work_dir / f"clip_{number}.mp4"
                await media.slice_audio(audio, clip_audio, clip_index * clip_duration, clip_duration)

                if clip_images:
                    await build_slideshow(
                        collaborators, clip_images, clip_scenes, clip_audio,
                        clip_output, clip_duration, work_dir, prefix=f"c{number}_",
                    )
                else:
                    await media.solid_clip(clip_audio, clip_output, clip_duration, f"{config.topic} - Part {number}")

                # A failed clip upload drops that clip; the job fails only when none land
                try:
                    urls.append(
                        await collaborators.storage.upload(clip_output, f"{context.artifact_owner}/{job_id}_clip{number}.mp4")
                    )
                except ProcessingError as e:
                    logger.warning("Clip upload failed", extra={"job_id": str(job_id), "clip": number, "error": str(e)})
        else:
            output = work_dir / "output.mp4"
            if images:
                scenes = config.scenes or [Scene(text=config.topic)]
                await build_slideshow(collaborators, images, scenes, audio, output, audio_duration, work_dir)
            else:
                logger.info("No scene images, using solid background", extra={"job_id": str(job_id)})
                await media.solid_clip(audio, output, audio_duration, config.topic)
            urls.append(await collaborators.storage.upload(output, f"{context.artifact_owner}/{job_id}.mp4"))

    if not urls:
        raise ProcessingError("Failed to upload any videos", step="upload")

    return HandlerResult(
        output={
            "url": urls[0],
            "clips": urls if config.is_multi_clip else None,
        }
    )
