"""
Turning picked files into attachment descriptors.

Upload transport is not our concern: the default uploader hands out local
references (file:// for files on disk, blob: for in-memory content), the way a
browser hands out object URLs. A real uploader only has to implement `upload`.
"""
import mimetypes
import uuid
from typing import Dict, Iterable, List, Optional, Protocol

from app.schemas.ticket import AttachmentSource, TicketAttachment

DEFAULT_MIME_TYPE = "application/octet-stream"


class AttachmentUploader(Protocol):
    async def upload(self, source: AttachmentSource) -> TicketAttachment: ...


def guess_mime_type(source: AttachmentSource) -> str:
    if source.mime_type:
        return source.mime_type
    guessed, _ = mimetypes.guess_type(source.filename)
    return guessed or DEFAULT_MIME_TYPE


class LocalAttachmentUploader:
    def __init__(self):
        self._blobs: Dict[str, bytes] = {}

    async def upload(self, source: AttachmentSource) -> TicketAttachment:
        if source.content is not None:
            url = f"blob:{uuid.uuid4()}"
            self._blobs[url] = source.content
            size = len(source.content)
        else:
            path = source.path.resolve()
            url = path.as_uri()
            size = path.stat().st_size
        return TicketAttachment(
            filename=source.filename,
            size=size,
            mime_type=guess_mime_type(source),
            url=url,
        )

    def resolve(self, url: str) -> Optional[bytes]:
        return self._blobs.get(url)

    def revoke(self, url: str) -> None:
        self._blobs.pop(url, None)


async def convert_attachments(
    uploader: AttachmentUploader,
    sources: Iterable[AttachmentSource],
    existing: Iterable[TicketAttachment] = (),
) -> List[TicketAttachment]:
    """Existing descriptors first, then new ones, each group in the order given."""
    attachments = list(existing)
    # one at a time so the result order matches the input order
    for source in sources:
        attachments.append(await uploader.upload(source))
    return attachments
