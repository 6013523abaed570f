"""Project artifacts: streaming parser, parsing, merging and preview bundling.

Key Components:
    - ArtifactStreamer: Incremental parser over streamed LLM tokens
    - parse_artifact: Parser for a complete artifact block
    - merge_artifacts / format_artifact_as_context: Refinement helpers
    - bundle_to_html: Single-file iframe preview
    - html helpers for single-document deliverables
"""

from artifacts.bundler import bundle_to_html
from artifacts.html import (
    extract_design_context,
    extract_html_block,
    rewrite_upload_urls,
    validate_html,
    wrap_text_as_html,
)
from artifacts.language import detect_language
from artifacts.merger import format_artifact_as_context, merge_artifacts
from artifacts.parser import parse_artifact
from artifacts.streamer import ArtifactStreamer
from artifacts.types import ArtifactFile, ProjectArtifact, StreamEvent, StreamEventType

__all__ = [
    "ArtifactFile",
    "ArtifactStreamer",
    "ProjectArtifact",
    "StreamEvent",
    "StreamEventType",
    "bundle_to_html",
    "detect_language",
    "extract_design_context",
    "extract_html_block",
    "format_artifact_as_context",
    "merge_artifacts",
    "parse_artifact",
    "rewrite_upload_urls",
    "validate_html",
    "wrap_text_as_html",
]
