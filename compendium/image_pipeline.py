from __future__ import annotations

from dataclasses import dataclass
import logging
import mimetypes
from pathlib import Path
import time
from typing import Callable, List, Optional

from compendium.auth import AccessGate
from compendium.editing import log_editor_timing
from compendium.errors import CommitResult, CompendiumError, EditorBusyError, RemoteError, ValidationError
from compendium.notifications import ToastChannel
from compendium.object_storage import ObjectStorage, storage_path_from_url
from compendium.store import RemoteStore

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 5 * 1024 * 1024
NOT_AN_IMAGE_MESSAGE = "Please select an image file."
TOO_LARGE_MESSAGE = "Image must be under 5MB."
UPLOAD_FAILED_MESSAGE = "Upload failed. Try again."
DEFAULT_EXTENSION = "png"

ImageChanged = Callable[[Optional[str]], None]


@dataclass(frozen=True)
class ImageUpload:
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_path(cls, path: str, content_type: Optional[str] = None) -> "ImageUpload":
        file_path = Path(path)
        guessed = content_type or mimetypes.guess_type(file_path.name)[0] or "application/octet-stream"
        return cls(filename=file_path.name, content_type=guessed, data=file_path.read_bytes())


def validate_image(upload: ImageUpload) -> None:
    if not (upload.content_type or "").lower().startswith("image/"):
        raise ValidationError(NOT_AN_IMAGE_MESSAGE, field="content_type")
    if upload.size > MAX_IMAGE_BYTES:
        raise ValidationError(TOO_LARGE_MESSAGE, field="size")


def image_extension(filename: str, content_type: Optional[str] = None) -> str:
    suffix = Path(filename or "").suffix.lstrip(".").lower()
    if suffix:
        return suffix
    guessed = mimetypes.guess_extension(content_type or "") or ""
    return guessed.lstrip(".").lower() or DEFAULT_EXTENSION


def portrait_path(character_id: str, filename: str, content_type: Optional[str] = None) -> str:
    return f"{character_id}/portrait.{image_extension(filename, content_type)}"


def cache_busted(url: str, token: int) -> str:
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}t={token}"


class ImagePipeline:
    """
    Portrait upload and removal for one character.

    Upload: validate locally, try to delete whatever sits at the canonical path (and the previously
    stored path when its extension differs), upload with overwrite, then write the public address
    with a `t=<ms>` token onto the character. Removal clears `image_url` even when the object
    delete fails.
    """

    def __init__(
        self,
        store: RemoteStore,
        storage: ObjectStorage,
        gate: AccessGate,
        character_id: str,
        image_url: Optional[str],
        *,
        on_changed: Optional[ImageChanged] = None,
        toasts: Optional[ToastChannel] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._storage = storage
        self._gate = gate
        self.character_id = character_id
        self.image_url = image_url or None
        self._on_changed = on_changed
        self._toasts = toasts if toasts is not None else ToastChannel()
        self._clock = clock
        self.busy = False
        self.error: Optional[str] = None
        self._detached = False

    @property
    def detached(self) -> bool:
        return self._detached

    def detach(self) -> None:
        self._detached = True

    def _failure(self, exc: CompendiumError) -> CommitResult:
        self.error = exc.user_message
        if not self._detached:
            self._toasts.error(exc.user_message)
        return CommitResult.failure(exc)

    async def _remove_quietly(self, paths: List[str]) -> None:
        try:
            await self._storage.remove(paths)
        except CompendiumError as exc:
            # a missing prior file and a failed delete look the same from here
            logger.info("Ignoring portrait delete failure for %s: %s", paths, exc)

    async def upload(self, upload: ImageUpload) -> CommitResult:
        self._gate.require_editor("upload image")
        try:
            validate_image(upload)
        except ValidationError as exc:
            self.error = exc.user_message
            return CommitResult.failure(exc)
        if self.busy:
            return CommitResult.failure(EditorBusyError())

        start = time.perf_counter()
        self.busy = True
        self.error = None
        try:
            path = portrait_path(self.character_id, upload.filename, upload.content_type)
            stale = [path]
            previous = storage_path_from_url(self.image_url)
            if previous and previous != path:
                stale.append(previous)
            await self._remove_quietly(stale)

            try:
                await self._storage.upload(path, upload.data, content_type=upload.content_type, overwrite=True)
            except CompendiumError as exc:
                logger.warning("Portrait upload failed for %s: %s", self.character_id, exc)
                return self._failure(RemoteError(str(exc), user_message=UPLOAD_FAILED_MESSAGE))

            url = cache_busted(self._storage.public_url(path), int(self._clock() * 1000))
            try:
                await self._store.update_character_basics(self.character_id, {"image_url": url})
            except CompendiumError as exc:
                return self._failure(exc)
        finally:
            self.busy = False
            log_editor_timing("image_pipeline", "upload", start, character_id=self.character_id, bytes=upload.size)

        if self._detached:
            return CommitResult.skipped("Saved after the page was closed.")
        self.image_url = url
        if self._on_changed is not None:
            self._on_changed(url)
        self._toasts.success("Image uploaded.")
        return CommitResult.success("Image uploaded.")

    async def remove(self, *, confirmed: bool) -> CommitResult:
        self._gate.require_editor("remove image")
        if not confirmed:
            return CommitResult.skipped()
        if self.busy:
            return CommitResult.failure(EditorBusyError())

        start = time.perf_counter()
        self.busy = True
        self.error = None
        try:
            path = storage_path_from_url(self.image_url)
            if path:
                await self._remove_quietly([path])
            try:
                await self._store.update_character_basics(self.character_id, {"image_url": None})
            except CompendiumError as exc:
                return self._failure(exc)
        finally:
            self.busy = False
            log_editor_timing("image_pipeline", "remove", start, character_id=self.character_id)

        if self._detached:
            return CommitResult.skipped("Removed after the page was closed.")
        self.image_url = None
        if self._on_changed is not None:
            self._on_changed(None)
        self._toasts.success("Image removed.")
        return CommitResult.success("Image removed.")
