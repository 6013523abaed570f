"""Parsing of a complete ``<logicArtifact>`` block from final LLM output."""

import re
import time

import structlog

from artifacts.language import detect_language
from artifacts.types import ArtifactFile, ProjectArtifact

logger = structlog.get_logger()

ARTIFACT_BLOCK_PATTERN = re.compile(r"<logicArtifact\s+([^>]*)>([\s\S]*?)</logicArtifact>")
ATTR_ID_PATTERN = re.compile(r'id="([^"]*)"')
ATTR_TITLE_PATTERN = re.compile(r'title="([^"]*)"')
ATTR_TYPE_PATTERN = re.compile(r'type="([^"]*)"')
ATTR_PATH_PATTERN = re.compile(r'filePath="([^"]*)"')
ATTR_COMMAND_PATTERN = re.compile(r'command="([^"]*)"')

ACTION_OPEN = "<logicAction"
ACTION_CLOSE = "</logicAction>"
DEFAULT_TITLE = "Project"


def parse_artifact(raw_output: str) -> ProjectArtifact | None:
    """Parse the artifact block embedded in an agent's full answer.

    File bodies may contain markup of their own, so actions are located
    by index rather than with a single regex over the body.

    Args:
        raw_output: Complete LLM output text.

    Returns:
        The parsed artifact, or None if there is no block or it has no files.
    """
    block = ARTIFACT_BLOCK_PATTERN.search(raw_output)
    if block is None:
        return None

    attrs, body = block.group(1), block.group(2)
    id_match = ATTR_ID_PATTERN.search(attrs)
    title_match = ATTR_TITLE_PATTERN.search(attrs)
    artifact_id = id_match.group(1) if id_match else f"project-{int(time.time() * 1000)}"
    title = title_match.group(1) if title_match else DEFAULT_TITLE

    files: list[ArtifactFile] = []
    shell_commands: list[str] = []

    pos = 0
    while pos < len(body):
        action_start = body.find(ACTION_OPEN, pos)
        if action_start == -1:
            break
        tag_end = body.find(">", action_start)
        if tag_end == -1:
            break

        tag = body[action_start : tag_end + 1]
        type_match = ATTR_TYPE_PATTERN.search(tag)
        action_type = type_match.group(1) if type_match else ""
        pos = tag_end + 1

        if action_type == "shell":
            command_match = ATTR_COMMAND_PATTERN.search(tag)
            if command_match:
                shell_commands.append(command_match.group(1))
            continue

        if action_type != "file" or tag.endswith("/>"):
            continue

        close_idx = body.find(ACTION_CLOSE, tag_end)
        if close_idx == -1:
            logger.debug("artifact_file_unterminated", tag=tag)
            continue

        path_match = ATTR_PATH_PATTERN.search(tag)
        file_path = path_match.group(1) if path_match else "unknown"
        content = body[tag_end + 1 : close_idx]
        if content.startswith("\n"):
            content = content[1:]
        if content.endswith("\n"):
            content = content[:-1]

        files.append(
            ArtifactFile(file_path=file_path, content=content, language=detect_language(file_path))
        )
        pos = close_idx + len(ACTION_CLOSE)

    if not files:
        return None

    return ProjectArtifact(
        id=artifact_id,
        title=title,
        files=files,
        shell_commands=shell_commands or None,
    )
