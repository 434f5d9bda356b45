from typing import Optional


class ImagePipelineError(Exception):
    """Base error of the ingestion pipeline.

    Carries the product and, where known, the content hash so a failure
    surfaced to the caller can be traced back to the upload.
    """

    def __init__(
        self,
        message: str,
        *,
        product_id: Optional[int] = None,
        content_hash: Optional[str] = None,
    ):
        self.message = message
        self.product_id = product_id
        self.content_hash = content_hash
        super().__init__(self._format())

    def _format(self) -> str:
        parts = [self.message]
        if self.product_id is not None:
            parts.append(f"product_id={self.product_id}")
        if self.content_hash:
            parts.append(f"content_hash={self.content_hash}")
        return " | ".join(parts)

    def add_context(
        self,
        *,
        product_id: Optional[int] = None,
        content_hash: Optional[str] = None,
    ) -> "ImagePipelineError":
        """Fill in what the raising layer did not know; set fields are kept."""
        if self.product_id is None:
            self.product_id = product_id
        if not self.content_hash:
            self.content_hash = content_hash
        self.args = (self._format(),)
        return self


class InvalidInputError(ImagePipelineError):
    pass


class UnsupportedFormatError(ImagePipelineError):
    pass


class TransformError(ImagePipelineError):
    pass


class DuplicateRaceError(ImagePipelineError):
    pass


class NoImagesError(ImagePipelineError):
    pass


class ImageNotFoundError(ImagePipelineError):
    pass


class ProductNotFoundError(ImagePipelineError):
    pass


class CarouselEntryNotFoundError(ImagePipelineError):
    def __init__(self, entry_id: int):
        self.entry_id = entry_id
        super().__init__(f"Carousel entry {entry_id} not found")


class StorageIOError(ImagePipelineError):
    def __init__(self, message: str, *, transient: bool = True, **kwargs):
        self.transient = transient
        super().__init__(message, **kwargs)


def is_transient_storage_error(exc: BaseException) -> bool:
    return isinstance(exc, StorageIOError) and exc.transient
