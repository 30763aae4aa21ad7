"""
Dropbox-backed remote store and attachment storage.
"""

import json
import logging
import re
import time
from typing import Callable, Optional

from ..core.exceptions import SnapshotFormatError
from ..core.models import Attachment, RemoteDocument, Revision, Snapshot
from .base import RemoteStore
from .dropbox_client import DropboxApiError, DropboxClient


logger = logging.getLogger(__name__)

DEFAULT_DOCUMENT_PATH = "/smartcards.json"
DEFAULT_ATTACHMENTS_FOLDER = "/attachments"

# Reserved path characters, plus '_' which breaks previews
_UNSAFE_NAME_CHARS = re.compile(r'[\\/:"*?<>|_]')


class DropboxRemoteStore(RemoteStore):
    """
    The synchronized document stored as one JSON file in Dropbox.

    Conditional writes use Dropbox's 'update' write mode, which only
    succeeds while the file is still at the given revision.
    """

    def __init__(self, client: DropboxClient, path: str = DEFAULT_DOCUMENT_PATH):
        self.client = client
        self.path = path

    def get_latest_revision(self) -> Optional[Revision]:
        try:
            metadata = self.client.rpc("files/get_metadata", {
                "path": self.path,
                "include_media_info": False,
                "include_deleted": False,
                "include_has_explicit_shared_members": False,
            })
        except DropboxApiError as e:
            if e.is_not_found:
                logger.debug(f"No document at {self.path}")
                return None
            raise

        revision = Revision.parse(metadata.get("rev"))
        logger.debug(f"Latest revision on server: {revision}")
        return revision

    def download(self, revision: Optional[Revision] = None) -> Optional[RemoteDocument]:
        if revision is None:
            revision = self.get_latest_revision()
            if revision is None:
                return None

        logger.debug(f"Downloading revision {revision}")
        try:
            _, content = self.client.content_download(
                "files/download", {"path": f"rev:{revision}"}
            )
        except DropboxApiError as e:
            if e.is_not_found:
                return None
            raise

        try:
            data = json.loads(content.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise SnapshotFormatError(f"Revision {revision} is not valid JSON: {e}") from e

        return RemoteDocument(snapshot=Snapshot.from_dict(data), revision=revision)

    def upload(self, snapshot: Snapshot, parent_revision: Optional[Revision] = None) -> Revision:
        if parent_revision is not None:
            mode = {".tag": "update", "update": str(parent_revision)}
        else:
            mode = {".tag": "overwrite"}
        logger.debug(f"Uploading {self.path} with mode {mode}")

        body = json.dumps(snapshot.to_dict(), indent=2, ensure_ascii=False).encode("utf-8")
        result = self.client.content_upload("files/upload", {
            "path": self.path,
            "mode": mode,
            "autorename": False,
            "mute": True,
        }, body)

        revision = Revision.parse(result.get("rev"))
        if revision is None:
            raise DropboxApiError("Upload response carried no revision")
        logger.info(f"Saved {self.path} at revision {revision}")
        return revision

    def get_name(self) -> str:
        return f"dropbox:{self.path}"

    def close(self) -> None:
        self.client.close()


def sanitize_file_name(name: str) -> str:
    """Replace characters Dropbox paths or previews cannot handle with '-'."""
    return _UNSAFE_NAME_CHARS.sub("-", name)


class DropboxAttachmentStore:
    """
    Card attachments stored as individual files in a Dropbox folder.

    The engine is unaware of attachments: the resulting Attachment objects
    are written into cards through the snapshot holder like any other edit.
    """

    def __init__(
        self,
        client: DropboxClient,
        folder: str = DEFAULT_ATTACHMENTS_FOLDER,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.folder = folder.rstrip("/")
        self.clock = clock

    def upload_attachment(self, file_name: str, content: bytes, content_type: str = "") -> Attachment:
        """
        Upload a file under a unique, timestamped name.

        Returns:
            Attachment describing the stored file
        """
        timestamp = int(self.clock() * 1000)
        path = f"{self.folder}/{timestamp}_{sanitize_file_name(file_name)}"

        result = self.client.content_upload("files/upload", {
            "path": path,
            "mode": {".tag": "add"},
            "autorename": True,
            "mute": True,
        }, content)

        logger.info(f"Uploaded attachment {file_name} to {path}")
        return Attachment(
            id=result.get("id") or path,
            name=file_name,
            path=result.get("path_display") or path,
            type=content_type,
            size=len(content),
        )

    def get_temporary_link(self, path: str) -> Optional[str]:
        """Short-lived download link, or None if the file is gone."""
        try:
            result = self.client.rpc("files/get_temporary_link", {"path": path})
        except DropboxApiError as e:
            if e.is_not_found:
                return None
            raise
        return result.get("link")

    def download_file(self, path: str) -> Optional[bytes]:
        """File content for previews, or None if the file is gone."""
        try:
            _, content = self.client.content_download("files/download", {"path": path})
        except DropboxApiError as e:
            if e.is_not_found:
                return None
            raise
        return content

    def delete_file(self, path: str) -> bool:
        """
        Delete a file. A file that is already gone counts as deleted.
        """
        try:
            self.client.rpc("files/delete_v2", {"path": path}, idempotent=False)
        except DropboxApiError as e:
            if e.is_not_found:
                logger.warning(f"Attachment already deleted: {path}")
                return True
            raise
        return True
