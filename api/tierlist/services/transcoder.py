from __future__ import annotations

import base64
import binascii
import io
import logging
from collections.abc import Callable
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

from tierlist.core.limits import ImageProfile
from tierlist.services.errors import AspectError, DecodeError, RetryExhausted, StorageError
from tierlist.services.ids import make_random_code
from tierlist.services.storage import AssetStorage

logger = logging.getLogger(__name__)

FILE_CODE_SIZE = 16

CodeFactory = Callable[[int, str], str]


@dataclass(frozen=True, slots=True)
class AssetContext:
    """Where the images of one entity live: ``<owner>/<category>/<entity>``."""

    owner_id: str
    category: str
    entity_id: str


def aspect_within_tolerance(width: int, height: int, *, expected: float, tolerance: float) -> bool:
    if height <= 0:
        return False
    return abs((width / height) / expected - 1.0) <= tolerance


class ImageTranscoder:
    def __init__(
        self,
        storage: AssetStorage,
        *,
        retry_count: int = 3,
        code_factory: CodeFactory = make_random_code,
    ) -> None:
        self.storage = storage
        self.retry_count = max(1, retry_count)
        self.code_factory = code_factory

    def transcode(
        self,
        context: AssetContext,
        name_prefix: str,
        encoded_payload: str,
        profile: ImageProfile,
        *,
        error_code: str,
    ) -> str:
        """Decode, check, shrink and store one image; returns its storage reference.

        Nothing is left on disk when this raises.
        """
        image = self._decode(encoded_payload, max_pixels=profile.max_pixels, error_code=error_code)
        try:
            width, height = image.size
            if profile.aspect_ratio is not None and profile.aspect_tolerance >= 0:
                if not aspect_within_tolerance(
                    width,
                    height,
                    expected=profile.aspect_ratio,
                    tolerance=profile.aspect_tolerance,
                ):
                    raise AspectError(f"{error_code}-03", "image aspect ratio is out of range")

            if image.mode != "RGB":
                image = image.convert("RGB")
            image.thumbnail((profile.max_edge, profile.max_edge), Image.Resampling.NEAREST)

            try:
                directory = self.storage.entity_dir(context.owner_id, context.category, context.entity_id)
            except ValueError as exc:
                raise StorageError(f"{error_code}-04", "invalid image folder") from exc
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise StorageError(f"{error_code}-04", "failed to prepare image folder") from exc

            path = None
            for attempt in range(self.retry_count):
                seed = f"{context.owner_id}{context.entity_id}_{attempt}"
                candidate = directory / f"{name_prefix}{self.code_factory(FILE_CODE_SIZE, seed)}.jpg"
                if not candidate.exists():
                    path = candidate
                    break
            if path is None:
                raise RetryExhausted(f"{error_code}-06", "failed to allocate an image file name, try again later")

            try:
                out = path.open("xb")
            except FileExistsError as exc:
                raise RetryExhausted(f"{error_code}-06", "failed to allocate an image file name, try again later") from exc
            except OSError as exc:
                raise StorageError(f"{error_code}-07", "failed to create image file") from exc

            try:
                with out:
                    image.save(out, format="JPEG", quality=profile.quality)
            except (OSError, ValueError) as exc:
                path.unlink(missing_ok=True)
                raise StorageError(f"{error_code}-08", "failed to write image file") from exc
        finally:
            image.close()

        reference = self.storage.reference_for(path)
        logger.info("image stored reference=%s width=%s height=%s", reference, width, height)
        return reference

    @staticmethod
    def _decode(encoded_payload: str, *, max_pixels: int, error_code: str) -> Image.Image:
        if encoded_payload.startswith("data:"):
            _, _, encoded_payload = encoded_payload.partition(",")
        try:
            raw = base64.b64decode(encoded_payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise DecodeError(f"{error_code}-01", "image payload is not valid base64") from exc

        try:
            image = Image.open(io.BytesIO(raw))
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
            raise DecodeError(f"{error_code}-02", "image payload could not be decoded") from exc

        width, height = image.size
        if width * height > max_pixels:
            image.close()
            raise DecodeError(f"{error_code}-02", "image dimensions are too large")
        try:
            image.load()
        except (Image.DecompressionBombError, OSError, ValueError) as exc:
            image.close()
            raise DecodeError(f"{error_code}-02", "image payload could not be decoded") from exc
        return image
