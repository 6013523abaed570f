"""Data models for multi-file project artifacts and their stream events."""

from enum import StrEnum

from pydantic import BaseModel, Field


class ArtifactFile(BaseModel):
    """A single file inside a project artifact."""

    file_path: str = Field(description="Path relative to the project root", examples=["src/App.tsx"])
    content: str = Field(default="", description="Full file content")
    language: str = Field(default="plaintext", description="Editor language id")


class ProjectArtifact(BaseModel):
    """One versioned snapshot of a multi-file deliverable.

    File paths are unique; uniqueness is enforced when artifacts are merged.
    """

    id: str = Field(default="", description="Artifact identifier")
    title: str = Field(default="", description="Human-readable title")
    files: list[ArtifactFile] = Field(default_factory=list)
    shell_commands: list[str] | None = Field(default=None)

    def get_file(self, file_path: str) -> ArtifactFile | None:
        """Return the file stored under ``file_path``, if any."""
        for file in self.files:
            if file.file_path == file_path:
                return file
        return None


class StreamEventType(StrEnum):
    """Events produced while parsing a streamed artifact."""

    ARTIFACT_START = "artifact_start"
    FILE_UPDATE = "file_update"


class StreamEvent(BaseModel):
    """A transient parser event. Never persisted."""

    type: StreamEventType
    file_path: str | None = None
    content: str | None = None
    language: str | None = None
    partial: bool = False
