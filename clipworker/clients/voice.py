"""
Text-to-speech client (ElevenLabs).
"""

import logging
from pathlib import Path

import httpx

from clipworker.exceptions import ProcessingError

logger = logging.getLogger(__name__)

ELEVENLABS_API_URL = "https://api.elevenlabs.io/v1/text-to-speech"
ELEVENLABS_MODEL = "eleven_turbo_v2_5"

VOICE_IDS: dict[str, str] = {
    "Rachel": "21m00Tcm4TlvDq8ikWAM",
    "Drew": "29vD33N1CtxCmqQRPOHJ",
    "Paul": "5Q0t7uMcjvnagumLfvZi",
    "Sarah": "EXAVITQu4vr4xnSDxMaL",
    "Charlie": "IKne3meq5aSn9XLyUdCD",
    "George": "JBFqnCBsd6RMkjVDRZzb",
    "Emily": "LcfcDJNUP1GQjkzn1xUU",
    "Josh": "TxGEqnHWrfWFTfGW9XjX",
    "Charlotte": "XB0fDUnXU5powFXDhCwa",
    "Lily": "pFZP5JQG7iQjIQuC4Bku",
}
DEFAULT_VOICE = "Rachel"


def resolve_voice_id(voice: str) -> str:
    """Map a display voice name to its provider id, defaulting to Rachel."""
    return VOICE_IDS.get(voice, VOICE_IDS[DEFAULT_VOICE])


class VoiceClient:
    def __init__(self, api_key: str | None, client: httpx.AsyncClient):
        self._api_key = api_key
        self._client = client

    async def synthesize(self, text: str, voice: str, output: Path) -> Path:
        """
        Render ``text`` to an MP3 file at ``output``.

        Raises:
            ProcessingError: If no API key is configured or the request fails.
        """
        if not self._api_key:
            raise ProcessingError("ELEVENLABS_API_KEY not configured", step="voiceover")

        voice_id = resolve_voice_id(voice)
        try:
            response = await self._client.post(
                f"{ELEVENLABS_API_URL}/{voice_id}",
                headers={"Accept": "audio/mpeg", "xi-api-key": self._api_key},
                json={
                    "text": text,
                    "model_id": ELEVENLABS_MODEL,
                    "voice_settings": {
                        "stability": 0.5,
                        "similarity_boost": 0.75,
                        "style": 0.0,
                        "use_speaker_boost": True,
                    },
                },
            )
        except httpx.HTTPError as e:
            raise ProcessingError(f"Voiceover request failed: {e}", step="voiceover") from e

        if response.is_error:
            raise ProcessingError(
                f"ElevenLabs API error: {response.status_code} - {response.text[:200]}",
                step="voiceover",
            )

        output.write_bytes(response.content)
        logger.info("Voiceover generated", extra={"voice": voice, "bytes": len(response.content)})
        return output
