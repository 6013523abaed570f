"""Single-file HTML preview bundling for project artifacts.

The preview iframe cannot run a build step, so source files are ordered by
their relative imports, stripped of module syntax and inlined into one page
that compiles JSX/TypeScript in the browser with Babel standalone.
"""

import html
import json
import posixpath
import re

import structlog

from artifacts.types import ArtifactFile, ProjectArtifact

logger = structlog.get_logger()

REACT_CDN_SCRIPTS = (
    '<script crossorigin src="https://unpkg.com/react@18/umd/react.development.js"></script>',
    '<script crossorigin src="https://unpkg.com/react-dom@18/umd/react-dom.development.js"></script>',
    '<script src="https://unpkg.com/@babel/standalone/babel.min.js"></script>',
    '<script src="https://cdn.tailwindcss.com"></script>',
)

SOURCE_FILE_PATTERN = re.compile(r"\.(tsx?|jsx?)$")
SOURCE_ROOTS = ("src/", "lib/", "components/")
APP_FILE_PATTERN = re.compile(r"App\.(tsx?|jsx?)$")
RELATIVE_IMPORT_PATTERN = re.compile(
    r"(?:^|\n)\s*import\s+[\s\S]*?from\s+['\"](\.{1,2}/[^'\"]+)['\"]"
)
IMPORT_STATEMENT_PATTERN = re.compile(
    r"^\s*import\s+(?:[\s\S]*?\s+from\s+)?['\"][^'\"]+['\"]\s*;?[ \t]*$", re.MULTILINE
)
RESOLVE_SUFFIXES = ("", ".tsx", ".ts", ".jsx", ".js", "/index.tsx", "/index.ts", "/index.jsx", "/index.js")


def _is_component_file(file: ArtifactFile) -> bool:
    return bool(SOURCE_FILE_PATTERN.search(file.file_path)) and file.file_path.startswith(
        SOURCE_ROOTS
    )


def _resolve_relative_import(from_path: str, import_path: str, known: set[str]) -> str | None:
    """Resolve ``import_path`` relative to ``from_path`` to a known file path."""
    base = posixpath.normpath(posixpath.join(posixpath.dirname(from_path), import_path))
    for suffix in RESOLVE_SUFFIXES:
        candidate = base + suffix
        if candidate in known:
            return candidate
    return None


def sort_files_by_imports(files: list[ArtifactFile]) -> list[ArtifactFile]:
    """Order source files so every file comes after the files it imports.

    Uses Kahn's algorithm, sorting each level alphabetically. Files caught in
    import cycles are appended in their original order, and the App file is
    always moved last.

    Args:
        files: Source files of one artifact.

    Returns:
        The same files in dependency order.
    """
    by_path = {file.file_path: file for file in files}
    known = set(by_path)
    dependents: dict[str, list[str]] = {path: [] for path in by_path}
    in_degree: dict[str, int] = dict.fromkeys(by_path, 0)

    for file in files:
        deps: set[str] = set()
        for match in RELATIVE_IMPORT_PATTERN.finditer(file.content):
            resolved = _resolve_relative_import(file.file_path, match.group(1), known)
            if resolved and resolved != file.file_path:
                deps.add(resolved)
        for dep in deps:
            in_degree[file.file_path] += 1
            dependents[dep].append(file.file_path)

    order: list[str] = []
    level = [path for path, degree in in_degree.items() if degree == 0]
    while level:
        level.sort()
        order.extend(level)
        next_level: list[str] = []
        for path in level:
            for dependent in dependents[path]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    next_level.append(dependent)
        level = next_level

    placed = set(order)
    order.extend(file.file_path for file in files if file.file_path not in placed)

    app_path = next((path for path in order if APP_FILE_PATTERN.search(path)), None)
    if app_path is not None:
        order.remove(app_path)
        order.append(app_path)

    return [by_path[path] for path in order]


def _default_name_for(file_path: str) -> str:
    stem = SOURCE_FILE_PATTERN.sub("", posixpath.basename(file_path)) or "DefaultExport"
    return stem[0].upper() + stem[1:]


def strip_module_syntax(code: str, file_path: str) -> tuple[str, str | None]:
    """Remove import and export syntax so files can share one script scope.

    Args:
        code: Source of one file.
        file_path: Path used to name anonymous default exports.

    Returns:
        Tuple of (stripped code, name bound to the default export or None).
    """
    default_name: str | None = None

    code = IMPORT_STATEMENT_PATTERN.sub("", code)
    code = re.sub(r"^import\s+type\s+.*$", "", code, flags=re.MULTILINE)
    code = re.sub(r"import\.meta\.env\.\w+|process\.env\.\w+", "''", code)

    code = re.sub(r"^export\s+(?:\*|\{[^}]*\})(?:\s+as\s+\w+)?\s+from\s+['\"][^'\"]*['\"]\s*;?\s*$", "", code, flags=re.MULTILINE)
    code = re.sub(r"^export\s+\{[^}]*\}\s*;?\s*$", "", code, flags=re.MULTILINE)

    named_default = re.search(r"export\s+default\s+(?:async\s+)?(function|class)\s+(\w+)", code)
    if named_default:
        default_name = named_default.group(2)
        code = re.sub(r"export\s+default\s+((?:async\s+)?(?:function|class)\s+)", r"\1", code)
    elif re.search(r"export\s+default\s+", code):
        default_name = _default_name_for(file_path)
        code = re.sub(r"export\s+default\s+", f"const {default_name} = ", code, count=1)

    code = re.sub(
        r"export\s+(async\s+function|function|const|let|var|class|interface|type|enum)\s+",
        r"\1 ",
        code,
    )
    return code, default_name


def bundle_to_html(artifact: ProjectArtifact) -> str:
    """Bundle a project artifact into one self-contained HTML document.

    An ``index.html`` that already contains a ``<body`` is returned as-is.

    Args:
        artifact: The artifact to preview.

    Returns:
        A complete HTML document.
    """
    index_html = artifact.get_file("index.html")
    if index_html is not None and "<body" in index_html.content:
        return index_html.content

    sources = sort_files_by_imports([f for f in artifact.files if _is_component_file(f)])

    app_component = "App"
    processed: list[str] = []
    for file in sources:
        code, default_name = strip_module_syntax(file.content, file.file_path)
        if APP_FILE_PATTERN.search(file.file_path) and default_name:
            app_component = default_name
        processed.append(f"// --- {file.file_path} ---\n{code}")

    css = "\n".join(f.content for f in artifact.files if f.file_path.endswith(".css"))
    # Tailwind directives only work with a build step
    css = re.sub(r"^@tailwind\s+\w+;\s*$", "", css, flags=re.MULTILINE)

    title = artifact.title
    package_json = artifact.get_file("package.json")
    if package_json is not None:
        try:
            title = json.loads(package_json.content).get("name") or title
        except (json.JSONDecodeError, AttributeError):
            logger.debug("bundle_package_json_unreadable", artifact_id=artifact.id)

    logger.info("artifact_bundled", artifact_id=artifact.id, source_files=len(sources))

    scripts = "\n  ".join(REACT_CDN_SCRIPTS)
    body = "\n\n".join(processed)
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1.0" />
  <title>{html.escape(title)}</title>
  {scripts}
  <style>
{css}
  </style>
</head>
<body>
  <div id="root"></div>
  <script type="text/babel" data-presets="typescript,react" data-filename="bundle.tsx">
const {{ useState, useEffect, useRef, useMemo, useCallback, useContext, createContext, Fragment }} = React;

{body}

ReactDOM.createRoot(document.getElementById("root")).render(<{app_component} />);
  </script>
</body>
</html>
"""
