"""
Audio Upload Validation and Storage.

Uploads are checked in order: size, declared MIME type, magic bytes,
declared/detected agreement, then duration. Only a file that passes every
check is written, under a generated name inside the upload directory.
"""

import asyncio
import io
import wave
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError
from pydub.utils import which

from guitar_dice.config import settings
from guitar_dice.exceptions import (
    AudioValidationError,
    DurationExceededError,
    PathTraversalError,
    StorageError,
)
from guitar_dice.models.api import ChatErrorCode
from guitar_dice.models.domain import AudioInfo, StoredAudio
from guitar_dice.observability.logging import get_logger
from guitar_dice.observability.metrics import metrics

logger = get_logger(__name__)

# Shortest buffer that can carry any supported signature
MIN_HEADER_BYTES = 12


@dataclass(frozen=True)
class AudioFormat:
    """A supported container: its stored extension and accepted MIME types."""

    name: str
    extension: str
    mime_types: frozenset[str]
    decoder: str  # pydub / ffmpeg format name


MP3 = AudioFormat("mp3", "mp3", frozenset({"audio/mpeg", "audio/x-mpeg"}), "mp3")
WAV = AudioFormat("wav", "wav", frozenset({"audio/wav", "audio/x-wav"}), "wav")
OGG = AudioFormat("ogg", "ogg", frozenset({"audio/ogg"}), "ogg")
M4A = AudioFormat("m4a", "m4a", frozenset({"audio/mp4", "audio/aac"}), "mp4")
FLAC = AudioFormat("flac", "flac", frozenset({"audio/flac"}), "flac")

ALLOWED_MIME_TYPES: frozenset[str] = frozenset().union(
    *(fmt.mime_types for fmt in (MP3, WAV, OGG, M4A, FLAC))
)


def normalize_mime(mime_type: str | None) -> str:
    """Lower-case MIME type without parameters ("audio/ogg; codecs=opus" -> "audio/ogg")."""
    if not mime_type:
        return ""
    return mime_type.split(";", 1)[0].strip().lower()


def detect_format(data: bytes) -> AudioFormat | None:
    """Identify the container from its leading bytes."""
    if len(data) < MIN_HEADER_BYTES:
        return None

    if data[:2] in (b"\xff\xfb", b"\xff\xf3", b"\xff\xf2") or data[:3] == b"ID3":
        return MP3
    if data[:4] == b"RIFF" and data[8:12] == b"WAVE":
        return WAV
    if data[:4] == b"OggS":
        return OGG
    if data[4:11] == b"ftypM4A":
        return M4A
    if data[:4] == b"fLaC":
        return FLAC
    return None


def _wav_duration(data: bytes) -> float | None:
    try:
        with wave.open(io.BytesIO(data), "rb") as wav:
            rate = wav.getframerate()
            if rate <= 0:
                return None
            return wav.getnframes() / float(rate)
    except (wave.Error, EOFError):
        return None


def decoder_available() -> bool:
    """True when the ffmpeg binary pydub decodes non-WAV containers with is on PATH."""
    return which(AudioSegment.converter) is not None


def _decoded_duration(data: bytes, fmt: AudioFormat) -> float | None:
    try:
        segment = AudioSegment.from_file(io.BytesIO(data), format=fmt.decoder)
    except FileNotFoundError as e:
        logger.error(
            "audio_decoder_missing",
            format=fmt.name,
            converter=AudioSegment.converter,
            error=str(e),
        )
        return None
    except (CouldntDecodeError, OSError, IndexError) as e:
        logger.info("audio_decode_failed", format=fmt.name, error=str(e))
        return None
    return segment.duration_seconds


def read_duration(data: bytes, fmt: AudioFormat) -> float | None:
    """Duration in seconds, or None when the container metadata is unusable."""
    if fmt is WAV:
        return _wav_duration(data)
    return _decoded_duration(data, fmt)


class AudioValidator:
    """
    Validates uploaded audio clips.

    Raises AudioValidationError (or DurationExceededError) with a
    machine-readable code on the first failing check.
    """

    def __init__(
        self,
        max_bytes: int | None = None,
        max_seconds: int | None = None,
    ) -> None:
        self.max_bytes = max_bytes if max_bytes is not None else settings.chat_max_upload_bytes
        self.max_seconds = (
            max_seconds if max_seconds is not None else settings.chat_max_audio_seconds
        )

    async def validate(self, data: bytes, declared_mime: str | None) -> AudioInfo:
        try:
            return await self._validate(data, declared_mime)
        except AudioValidationError as e:
            metrics.record_audio_rejection(e.code.value)
            logger.info("audio_rejected", code=e.code.value, size=len(data))
            raise

    async def _validate(self, data: bytes, declared_mime: str | None) -> AudioInfo:
        if not data:
            raise AudioValidationError(ChatErrorCode.NO_AUDIO_FILE, "No audio file provided")

        if len(data) > self.max_bytes:
            raise AudioValidationError(
                ChatErrorCode.FILE_TOO_LARGE,
                f"Audio file must be {self.max_bytes // (1024 * 1024)}MB or less",
            )

        mime = normalize_mime(declared_mime)
        if mime not in ALLOWED_MIME_TYPES:
            raise AudioValidationError(
                ChatErrorCode.INVALID_FILE_TYPE,
                "Invalid file type. Only audio files are allowed.",
            )

        fmt = detect_format(data)
        if fmt is None:
            raise AudioValidationError(
                ChatErrorCode.INVALID_MAGIC_BYTES,
                "Invalid audio file format. File does not appear to be a valid audio file.",
            )

        if mime not in fmt.mime_types:
            raise AudioValidationError(
                ChatErrorCode.INCONSISTENT_FILE_FORMAT,
                f"File content ({fmt.name}) does not match declared type {mime}",
            )

        duration = await asyncio.to_thread(read_duration, data, fmt)
        if duration is None or duration <= 0:
            raise AudioValidationError(
                ChatErrorCode.INVALID_AUDIO_METADATA,
                "Could not read audio duration",
            )
        if duration > self.max_seconds:
            raise DurationExceededError(duration, self.max_seconds)

        return AudioInfo(
            format=fmt.name,
            extension=fmt.extension,
            mime_type=mime,
            duration_seconds=duration,
        )


class AudioStorage:
    """Writes validated clips under the upload directory and maps them to URLs."""

    def __init__(self, upload_dir: str | Path | None = None, url_prefix: str | None = None):
        self.upload_dir = Path(upload_dir or settings.chat_upload_dir).resolve()
        self.url_prefix = (url_prefix or settings.chat_upload_url_prefix).rstrip("/")

    def resolve(self, filename: str) -> Path:
        """Absolute path for filename; refuses anything outside the upload directory."""
        path = (self.upload_dir / filename).resolve()
        if not path.is_relative_to(self.upload_dir) or path == self.upload_dir:
            logger.warning("path_traversal_rejected", filename=filename)
            raise PathTraversalError(filename)
        return path

    async def save(self, data: bytes, info: AudioInfo) -> StoredAudio:
        filename = f"{uuid4().hex}.{info.extension}"
        path = self.resolve(filename)
        try:
            await asyncio.to_thread(self._write, path, data)
        except OSError as e:
            logger.error("audio_write_failed", filename=filename, error=str(e))
            raise StorageError(f"Failed to store audio file: {e}") from e

        logger.info("audio_stored", filename=filename, size=len(data), format=info.format)
        return StoredAudio(filename=filename, url=f"{self.url_prefix}/{filename}")

    async def delete_url(self, url: str) -> bool:
        """Remove the file behind a stored audio URL. False if it was not ours or missing."""
        prefix = f"{self.url_prefix}/"
        if not url.startswith(prefix):
            return False
        path = self.resolve(url[len(prefix):])
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return False
        return True

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
