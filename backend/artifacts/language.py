"""File extension to editor language mapping."""

import posixpath

LANGUAGE_BY_EXTENSION: dict[str, str] = {
    "ts": "typescript",
    "tsx": "typescript",
    "js": "javascript",
    "jsx": "javascript",
    "json": "json",
    "css": "css",
    "html": "html",
    "md": "markdown",
    "svg": "xml",
    "yml": "yaml",
    "yaml": "yaml",
    "sh": "bash",
    "env": "plaintext",
    "gitignore": "plaintext",
    "txt": "plaintext",
}


def detect_language(file_path: str) -> str:
    """Detect the editor language for a file from its extension.

    Dotfiles such as ``.gitignore`` or ``.env`` are looked up by their name.

    Args:
        file_path: Path of the file, relative or absolute.

    Returns:
        A language id, ``"plaintext"`` for unknown extensions.
    """
    name = posixpath.basename(file_path)
    ext = name.rsplit(".", 1)[-1].lower() if "." in name else ""
    return LANGUAGE_BY_EXTENSION.get(ext, "plaintext")
