"""Merging of partial artifact updates and artifact-to-prompt formatting."""

from artifacts.types import ProjectArtifact

CONTEXT_FILE_CHAR_BUDGET = 3000


def merge_artifacts(base: ProjectArtifact, update: ProjectArtifact) -> ProjectArtifact:
    """Merge a partial update into a previous full artifact.

    Refinement answers only contain the files that changed, so:
    - files in ``update`` replace same-path files of ``base`` in place
    - files new in ``update`` are appended
    - files only in ``base`` are kept verbatim

    Args:
        base: The previous full artifact.
        update: The artifact parsed from the refinement answer.

    Returns:
        A new artifact. Neither input is modified.
    """
    merged_files = [file.model_copy() for file in base.files]
    index_by_path = {file.file_path: idx for idx, file in enumerate(merged_files)}

    for update_file in update.files:
        existing_idx = index_by_path.get(update_file.file_path)
        if existing_idx is not None:
            merged_files[existing_idx] = update_file.model_copy()
        else:
            index_by_path[update_file.file_path] = len(merged_files)
            merged_files.append(update_file.model_copy())

    shell_commands = [*(base.shell_commands or []), *(update.shell_commands or [])]

    return ProjectArtifact(
        id=update.id or base.id,
        title=update.title or base.title,
        files=merged_files,
        shell_commands=shell_commands or None,
    )


def format_artifact_as_context(artifact: ProjectArtifact) -> str:
    """Render an artifact as a bounded text block for a refinement prompt.

    The block has a header with the title and file count, a file listing
    with languages, then each file's content truncated to
    CONTEXT_FILE_CHAR_BUDGET characters with a remainder marker.
    """
    parts: list[str] = [
        f"=== CURRENT PROJECT: {artifact.title} ({len(artifact.files)} files) ===",
        "",
        "Files:",
    ]
    parts.extend(f"  - {file.file_path} ({file.language})" for file in artifact.files)
    parts.append("")

    for file in artifact.files:
        parts.append(f"--- {file.file_path} ---")
        if len(file.content) > CONTEXT_FILE_CHAR_BUDGET:
            parts.append(file.content[:CONTEXT_FILE_CHAR_BUDGET])
            remaining = len(file.content) - CONTEXT_FILE_CHAR_BUDGET
            parts.append(f"... ({remaining} more characters)")
        else:
            parts.append(file.content)
        parts.append(f"--- end {file.file_path} ---")
        parts.append("")

    return "\n".join(parts)
