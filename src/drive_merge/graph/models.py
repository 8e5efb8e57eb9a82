"""Data models for Microsoft Graph API drive items and folder records."""

from dataclasses import dataclass, field

# Graph API JSON field names
FIELD_ID = "id"
FIELD_NAME = "name"
FIELD_FOLDER = "folder"
FIELD_DELETED = "deleted"
FIELD_ROOT = "root"
FIELD_PARENT_REFERENCE = "parentReference"
FIELD_PATH = "path"

# OData response keys
ODATA_DELTA_LINK = "@odata.deltaLink"
ODATA_NEXT_LINK = "@odata.nextLink"
ODATA_VALUE = "value"

# Conflict behaviour annotation for folder creation
CONFLICT_BEHAVIOR = "@microsoft.graph.conflictBehavior"

# Sentinel scope id meaning "the drive root"
ROOT_ID = "root"


@dataclass
class DriveItem:
    """Represents a single item (file or folder) listed from a drive folder."""

    id: str
    name: str
    parent_id: str
    parent_path: str
    is_folder: bool
    is_deleted: bool


@dataclass(frozen=True)
class FolderRecord:
    """Immutable snapshot of a folder as reported by the remote store.

    ``parent_ids`` normally holds exactly one entry; the first one is
    authoritative.
    """

    id: str
    name: str
    parent_ids: tuple[str, ...] = field(default_factory=tuple)

    @property
    def parent_id(self) -> str | None:
        """Return the authoritative parent id, if any."""
        return self.parent_ids[0] if self.parent_ids else None
