"""Incremental parser for the ``<logicArtifact>`` tagged-file protocol.

Project agents answer with free-form text that embeds a block such as::

    <logicArtifact id="landing" title="Landing page">
    <logicAction type="file" filePath="src/App.tsx">
    export default function App() { ... }
    </logicAction>
    <logicAction type="shell" command="npm install"/>
    </logicArtifact>

The ArtifactStreamer consumes the LLM output token by token (tokens can be
as small as one character) and emits StreamEvents as soon as they can be
recognized, so the frontend can render files while they are still being
written.
"""

import re
from dataclasses import dataclass, field

import structlog

from artifacts.language import detect_language
from artifacts.types import ArtifactFile, StreamEvent, StreamEventType

logger = structlog.get_logger()

ARTIFACT_OPEN = "<logicArtifact"
ARTIFACT_CLOSE = "</logicArtifact>"
ACTION_CLOSE = "</logicAction>"

FILE_ACTION_PATTERN = re.compile(r'<logicAction\s+type="file"\s+filePath="([^"]*)">')
FILE_ACTION_ALT_PATTERN = re.compile(r'<logicAction\s+filePath="([^"]*)"\s+type="file">')
SHELL_ACTION_PATTERN = re.compile(r'<logicAction\s+type="shell"\s+command="[^"]*"\s*/>')

# Buffer bounds while scanning for tags outside of a file body
BUFFER_TRIM_THRESHOLD = 500
BUFFER_KEEP_TAIL = 200


def _strip_one_newline(text: str, *, leading: bool = True, trailing: bool = True) -> str:
    """Remove exactly one leading and/or trailing newline."""
    if leading and text.startswith("\n"):
        text = text[1:]
    if trailing and text.endswith("\n"):
        text = text[:-1]
    return text


@dataclass
class _OpenFile:
    path: str
    chunks: list[str] = field(default_factory=list)


class ArtifactStreamer:
    """Stateful single-pass parser over streamed artifact tokens.

    The parser never suspends and is safe to call from a provider's token
    callback. One instance serves one stream; call ``reset()`` to reuse it.

    Attributes:
        PARTIAL_THRESHOLD: Minimum growth in characters between two
            ``partial=True`` file updates for the same file.
    """

    PARTIAL_THRESHOLD = 500

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        """Restore the parser to its freshly constructed state."""
        self._buffer = ""
        self._current_file: _OpenFile | None = None
        self._inside_artifact = False
        self._artifact_started = False
        self._completed_files: list[ArtifactFile] = []
        self._last_partial_length = 0

    def is_streaming(self) -> bool:
        """Return True while an artifact block is open."""
        return self._inside_artifact

    def get_completed_files(self) -> list[ArtifactFile]:
        """Return a snapshot of every file completed so far."""
        return [file.model_copy() for file in self._completed_files]

    def on_token(self, token: str) -> list[StreamEvent]:
        """Feed one token into the parser.

        Args:
            token: The next text fragment from the LLM stream.

        Returns:
            Events recognized thanks to this token, in order. Usually empty.
        """
        self._buffer += token
        events: list[StreamEvent] = []

        if not self._inside_artifact and not self._enter_artifact(events):
            return events

        self._process_buffer(events)
        return events

    def _enter_artifact(self, events: list[StreamEvent]) -> bool:
        """Look for the artifact opening tag. Returns True once inside."""
        open_idx = self._buffer.find(ARTIFACT_OPEN)
        if open_idx == -1:
            if len(self._buffer) > BUFFER_TRIM_THRESHOLD:
                self._buffer = self._buffer[-BUFFER_TRIM_THRESHOLD:]
            return False

        tag_end = self._buffer.find(">", open_idx)
        if tag_end == -1:
            return False

        self._inside_artifact = True
        if not self._artifact_started:
            self._artifact_started = True
            events.append(StreamEvent(type=StreamEventType.ARTIFACT_START))
            logger.debug("artifact_stream_started")
        self._buffer = self._buffer[tag_end + 1 :]
        return True

    def _process_buffer(self, events: list[StreamEvent]) -> None:
        """Consume as much of the buffer as the current state allows.

        Several files may open and close within a single token, so the
        buffer is reprocessed until no further progress is possible.
        """
        while self._inside_artifact:
            if self._current_file is not None:
                if not self._close_file(events):
                    self._emit_partial(events)
                    return
                continue

            if self._open_file():
                continue

            shell_match = SHELL_ACTION_PATTERN.search(self._buffer)
            if shell_match:
                self._buffer = self._buffer[shell_match.end() :]
                continue

            if ARTIFACT_CLOSE in self._buffer:
                self._inside_artifact = False
                self._buffer = ""
                logger.debug("artifact_stream_ended", files=len(self._completed_files))
                return

            if len(self._buffer) > BUFFER_TRIM_THRESHOLD:
                self._buffer = self._buffer[-BUFFER_KEEP_TAIL:]
            return

    def _open_file(self) -> bool:
        match = FILE_ACTION_PATTERN.search(self._buffer) or FILE_ACTION_ALT_PATTERN.search(
            self._buffer
        )
        if match is None:
            return False
        self._current_file = _OpenFile(path=match.group(1))
        self._last_partial_length = 0
        self._buffer = self._buffer[match.end() :]
        return True

    def _close_file(self, events: list[StreamEvent]) -> bool:
        assert self._current_file is not None
        close_idx = self._buffer.find(ACTION_CLOSE)
        if close_idx == -1:
            return False

        current = self._current_file
        current.chunks.append(self._buffer[:close_idx])
        content = _strip_one_newline("".join(current.chunks))
        language = detect_language(current.path)

        events.append(
            StreamEvent(
                type=StreamEventType.FILE_UPDATE,
                file_path=current.path,
                content=content,
                language=language,
                partial=False,
            )
        )
        self._completed_files.append(
            ArtifactFile(file_path=current.path, content=content, language=language)
        )
        self._current_file = None
        self._last_partial_length = 0
        self._buffer = self._buffer[close_idx + len(ACTION_CLOSE) :]
        return True

    def _emit_partial(self, events: list[StreamEvent]) -> None:
        assert self._current_file is not None
        current_content = "".join(self._current_file.chunks) + self._buffer
        if len(current_content) - self._last_partial_length < self.PARTIAL_THRESHOLD:
            return
        self._last_partial_length = len(current_content)
        events.append(
            StreamEvent(
                type=StreamEventType.FILE_UPDATE,
                file_path=self._current_file.path,
                content=_strip_one_newline(current_content, trailing=False),
                language=detect_language(self._current_file.path),
                partial=True,
            )
        )
