"""Tests for artifacts/streamer.py -- incremental artifact parsing."""

from artifacts.streamer import ArtifactStreamer
from artifacts.types import StreamEvent, StreamEventType

SIMPLE_ARTIFACT = (
    "Here is your project.\n"
    '<logicArtifact id="demo" title="Demo">\n'
    '<logicAction type="file" filePath="src/App.tsx">\n'
    "export default function App() {\n"
    "  return <div>Hello</div>;\n"
    "}\n"
    "</logicAction>\n"
    '<logicAction type="shell" command="npm install"/>\n'
    '<logicAction filePath="src/index.css" type="file">\n'
    "body { margin: 0; }\n"
    "</logicAction>\n"
    "</logicArtifact>\n"
    "Done."
)


def feed(streamer: ArtifactStreamer, text: str, chunk_size: int) -> list[StreamEvent]:
    events: list[StreamEvent] = []
    for start in range(0, len(text), chunk_size):
        events.extend(streamer.on_token(text[start : start + chunk_size]))
    return events


def final_updates(events: list[StreamEvent]) -> list[StreamEvent]:
    return [e for e in events if e.type == StreamEventType.FILE_UPDATE and not e.partial]


# =========================================================================
# Basic parsing
# =========================================================================


class TestArtifactParsing:
    def test_whole_text_in_one_token(self) -> None:
        streamer = ArtifactStreamer()
        events = streamer.on_token(SIMPLE_ARTIFACT)

        assert events[0].type == StreamEventType.ARTIFACT_START
        updates = final_updates(events)
        assert [u.file_path for u in updates] == ["src/App.tsx", "src/index.css"]
        assert updates[0].content == (
            "export default function App() {\n  return <div>Hello</div>;\n}"
        )
        assert updates[0].language == "typescript"
        assert updates[1].content == "body { margin: 0; }"
        assert updates[1].language == "css"

    def test_single_character_tokens_give_same_result(self) -> None:
        whole = final_updates(ArtifactStreamer().on_token(SIMPLE_ARTIFACT))
        by_char = final_updates(feed(ArtifactStreamer(), SIMPLE_ARTIFACT, 1))

        assert [(u.file_path, u.content) for u in by_char] == [
            (u.file_path, u.content) for u in whole
        ]

    def test_various_chunk_sizes_are_consistent(self) -> None:
        expected = [(u.file_path, u.content) for u in final_updates(feed(ArtifactStreamer(), SIMPLE_ARTIFACT, 1))]
        for size in (2, 3, 7, 13, 64):
            got = [(u.file_path, u.content) for u in final_updates(feed(ArtifactStreamer(), SIMPLE_ARTIFACT, size))]
            assert got == expected, f"chunk size {size}"

    def test_artifact_start_emitted_once(self) -> None:
        streamer = ArtifactStreamer()
        events = feed(streamer, SIMPLE_ARTIFACT + SIMPLE_ARTIFACT, 5)
        starts = [e for e in events if e.type == StreamEventType.ARTIFACT_START]
        assert len(starts) == 1

    def test_shell_actions_produce_no_events(self) -> None:
        streamer = ArtifactStreamer()
        events = streamer.on_token(
            '<logicArtifact id="x" title="X">'
            '<logicAction type="shell" command="npm run dev"/>'
            "</logicArtifact>"
        )
        assert [e.type for e in events] == [StreamEventType.ARTIFACT_START]
        assert streamer.get_completed_files() == []

    def test_text_without_artifact_emits_nothing(self) -> None:
        streamer = ArtifactStreamer()
        events = feed(streamer, "Just a plain answer. " * 100, 10)
        assert events == []
        assert not streamer.is_streaming()

    def test_opening_tag_split_across_tokens(self) -> None:
        streamer = ArtifactStreamer()
        assert streamer.on_token("intro <logicArti") == []
        assert streamer.on_token('fact id="a" title="A"') == []
        events = streamer.on_token(">")
        assert [e.type for e in events] == [StreamEventType.ARTIFACT_START]
        assert streamer.is_streaming()

    def test_multiple_files_in_one_token(self) -> None:
        streamer = ArtifactStreamer()
        streamer.on_token('<logicArtifact id="a" title="A">')
        events = streamer.on_token(
            '<logicAction type="file" filePath="a.ts">A</logicAction>'
            '<logicAction type="file" filePath="b.ts">B</logicAction>'
        )
        assert [(e.file_path, e.content) for e in final_updates(events)] == [
            ("a.ts", "A"),
            ("b.ts", "B"),
        ]


# =========================================================================
# Newline trimming
# =========================================================================


class TestNewlineTrimming:
    def test_only_one_leading_and_trailing_newline_removed(self) -> None:
        streamer = ArtifactStreamer()
        events = streamer.on_token(
            '<logicArtifact id="a" title="A">'
            '<logicAction type="file" filePath="notes.md">\n\nbody\n\n</logicAction>'
        )
        assert final_updates(events)[0].content == "\nbody\n"


# =========================================================================
# Partial updates
# =========================================================================


class TestPartialUpdates:
    def test_partial_emitted_after_threshold(self) -> None:
        streamer = ArtifactStreamer()
        streamer.on_token('<logicArtifact id="a" title="A">')
        streamer.on_token('<logicAction type="file" filePath="src/big.ts">\n')

        # 1 newline + 498 chars stays below the threshold
        events = streamer.on_token("x" * 498)
        assert events == []

        events = streamer.on_token("x" * 10)
        assert len(events) == 1
        assert events[0].partial is True
        assert events[0].file_path == "src/big.ts"
        assert not events[0].content.startswith("\n")

    def test_partials_respect_growth_threshold(self) -> None:
        streamer = ArtifactStreamer()
        streamer.on_token('<logicArtifact id="a" title="A">')
        streamer.on_token('<logicAction type="file" filePath="big.ts">')

        events = feed(streamer, "y" * 1600, 50)
        partials = [e for e in events if e.partial]
        assert len(partials) == 3
        lengths = [len(p.content) for p in partials]
        assert all(b - a >= ArtifactStreamer.PARTIAL_THRESHOLD for a, b in zip(lengths, lengths[1:]))

    def test_final_update_follows_partials(self) -> None:
        streamer = ArtifactStreamer()
        body = "z" * 1200
        events = feed(
            streamer,
            f'<logicArtifact id="a" title="A"><logicAction type="file" filePath="f.ts">'
            f"{body}</logicAction></logicArtifact>",
            40,
        )
        file_events = [e for e in events if e.type == StreamEventType.FILE_UPDATE]
        assert file_events[-1].partial is False
        assert file_events[-1].content == body
        assert any(e.partial for e in file_events)


# =========================================================================
# State and lifecycle
# =========================================================================


class TestStreamerState:
    def test_is_streaming_tracks_artifact_block(self) -> None:
        streamer = ArtifactStreamer()
        assert not streamer.is_streaming()
        streamer.on_token('<logicArtifact id="a" title="A">')
        assert streamer.is_streaming()
        streamer.on_token("</logicArtifact>")
        assert not streamer.is_streaming()

    def test_completed_files_is_snapshot(self) -> None:
        streamer = ArtifactStreamer()
        streamer.on_token(SIMPLE_ARTIFACT)
        files = streamer.get_completed_files()
        files[0].content = "mutated"
        files.clear()

        again = streamer.get_completed_files()
        assert len(again) == 2
        assert again[0].content.startswith("export default")

    def test_reset_restores_initial_state(self) -> None:
        streamer = ArtifactStreamer()
        streamer.on_token(SIMPLE_ARTIFACT)
        streamer.reset()

        assert streamer.get_completed_files() == []
        assert not streamer.is_streaming()
        events = streamer.on_token(SIMPLE_ARTIFACT)
        assert events[0].type == StreamEventType.ARTIFACT_START

    def test_long_preamble_does_not_lose_artifact(self) -> None:
        streamer = ArtifactStreamer()
        events = feed(streamer, "chatter " * 400 + SIMPLE_ARTIFACT, 11)
        assert len(final_updates(events)) == 2
