from enum import Enum
from pathlib import Path
from typing import Annotated, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field

class MediaCategory(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"
    IMAGE = "image"

class OutcomeStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"

class FileEntry(BaseModel):
    type: Literal["file"] = "file"
    path: Path
    name: str
    category: MediaCategory
    size: int = 0
    duration: Optional[float] = None

class FolderEntry(BaseModel):
    type: Literal["folder"] = "folder"
    path: Path
    name: str
    size: int = 0
    children: List["DirEntry"] = Field(default_factory=list)

DirEntry = Annotated[Union[FolderEntry, FileEntry], Field(discriminator="type")]

FolderEntry.model_rebuild()

class DirTree(BaseModel):
    """Top-level selection, as produced by the tree walker or read from JSON."""
    entries: List[DirEntry] = Field(default_factory=list)

class WorkItem(BaseModel):
    """One flattened file, ready to encode.

    output_path is the extension-less base; the driver picks the suffix.
    """
    model_config = ConfigDict(frozen=True)

    category: MediaCategory
    input_path: Path
    output_path: Path

class ItemOutcome(BaseModel):
    item: WorkItem
    status: OutcomeStatus
    reason: Optional[str] = None

    @classmethod
    def succeeded(cls, item: WorkItem) -> "ItemOutcome":
        return cls(item=item, status=OutcomeStatus.SUCCEEDED)

    @classmethod
    def failed(cls, item: WorkItem, reason: str) -> "ItemOutcome":
        return cls(item=item, status=OutcomeStatus.FAILED, reason=reason)

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.SUCCEEDED
