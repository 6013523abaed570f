"""HTML helpers for single-document deliverables.

Design agents answer with a full HTML page; text agents answer with
markdown. These helpers pull the page out of the answer, condense it into a
context block for downstream code agents, and wrap plain text into a styled
page so every deliverable renders in the same preview iframe.
"""

import html
import re

TAILWIND_CONFIG_PATTERN = re.compile(r"tailwind\.config\s*=\s*(\{[\s\S]*?\n\s*\})\s*</script>")
GOOGLE_FONTS_PATTERN = re.compile(r"<link[^>]*fonts\.googleapis\.com[^>]*>")
GENERATED_IMAGE_PATTERN = re.compile(r"/uploads/generated/[^\"'\s)]+")
UNSPLASH_IMAGE_PATTERN = re.compile(r"https://images\.unsplash\.com/[^\"'\s)]+")
SECTION_PATTERN = re.compile(
    r"<(nav|header|section|main|footer)[^>]*(?:class=\"([^\"]*)\")?[^>]*>", re.IGNORECASE
)

STRUCTURAL_TAGS = ("div", "section", "nav", "main", "footer", "header")
TAILWIND_CDN = "cdn.tailwindcss.com"

AGENT_COLORS: dict[str, str] = {
    "lupa": "#3b82f6",
    "nova": "#ec4899",
    "pixel": "#a855f7",
    "spark": "#f97316",
    "metric": "#10b981",
    "logic": "#f59e0b",
    "reel": "#ef4444",
}
DEFAULT_AGENT_COLOR = "#6b7280"


def extract_html_block(text: str) -> str | None:
    """Extract a complete HTML document from mixed LLM output.

    The document starts at ``<!DOCTYPE`` (or ``<html`` when there is no
    doctype) and ends at the last ``</html>``.

    Returns:
        The stripped document, or None if no complete document is present.
    """
    doctype_idx = text.find("<!DOCTYPE")
    start_idx = doctype_idx if doctype_idx >= 0 else text.find("<html")
    if start_idx < 0:
        return None

    end_idx = text.rfind("</html>")
    if end_idx <= start_idx:
        return None
    return text[start_idx : end_idx + len("</html>")].strip()


def _unique(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))


def extract_design_context(page: str) -> str:
    """Condense a design agent's HTML page for a code agent's prompt.

    Extracts the tailwind config, Google Fonts links, generated and stock
    image URLs, and the page's section structure.

    Args:
        page: The design agent's full HTML output.

    Returns:
        The context block, or an empty string when nothing was found.
    """
    parts: list[str] = []

    config_match = TAILWIND_CONFIG_PATTERN.search(page)
    if config_match:
        parts.append(
            f"=== TAILWIND CONFIG (use exactly) ===\ntailwind.config = {config_match.group(1)}"
        )

    fonts = GOOGLE_FONTS_PATTERN.findall(page)
    if fonts:
        parts.append("=== GOOGLE FONTS ===\n" + "\n".join(fonts))

    generated = _unique(GENERATED_IMAGE_PATTERN.findall(page))
    if generated:
        parts.append("=== GENERATED IMAGES (keep exact URLs) ===\n" + "\n".join(generated))

    unsplash = _unique(UNSPLASH_IMAGE_PATTERN.findall(page))
    if unsplash:
        parts.append("=== UNSPLASH PHOTOS (keep exact URLs) ===\n" + "\n".join(unsplash))

    sections = []
    for match in SECTION_PATTERN.finditer(page):
        tag = match.group(1).lower()
        classes = match.group(2) or ""
        sections.append(f'<{tag}> class="{classes[:100]}"' if classes else f"<{tag}>")
    if sections:
        parts.append("=== SECTION STRUCTURE ===\n" + "\n".join(sections))

    return "\n\n".join(parts)


def validate_html(page: str) -> list[str]:
    """Check a generated page for structural problems.

    Returns:
        Human-readable error strings. Empty when the page looks valid.
    """
    errors: list[str] = []
    lower = page.lower()
    if "<!doctype html>" not in lower:
        errors.append("Missing <!DOCTYPE html>")
    if "<html" not in lower:
        errors.append("Missing <html> tag")
    if "<head" not in lower:
        errors.append("Missing <head> tag")
    if "<body" not in lower:
        errors.append("Missing <body> tag")

    for tag in STRUCTURAL_TAGS:
        opens = len(re.findall(rf"<{tag}[\s>]", page, re.IGNORECASE))
        closes = len(re.findall(rf"</{tag}>", page, re.IGNORECASE))
        if opens != closes:
            errors.append(f"Unbalanced <{tag}> tags: {opens} opening vs {closes} closing")

    if TAILWIND_CDN not in page:
        errors.append(
            'Missing Tailwind CSS CDN (<script src="https://cdn.tailwindcss.com"></script>)'
        )
    return errors


def _markdown_to_html(text: str) -> str:
    body = html.escape(text, quote=False)
    body = re.sub(r"^### (.+)$", r"<h3>\1</h3>", body, flags=re.MULTILINE)
    body = re.sub(r"^## (.+)$", r"<h2>\1</h2>", body, flags=re.MULTILINE)
    body = re.sub(r"^# (.+)$", r"<h1>\1</h1>", body, flags=re.MULTILINE)
    body = re.sub(r"\*\*(.+?)\*\*", r"<strong>\1</strong>", body)
    body = re.sub(r"\*(.+?)\*", r"<em>\1</em>", body)
    body = re.sub(r"^- (.+)$", r"<li>\1</li>", body, flags=re.MULTILINE)
    body = re.sub(r"(?:<li>.*</li>\n?)+", lambda m: f"<ul>{m.group(0)}</ul>", body)
    body = re.sub(r"^\d+\.\s(.+)$", r"<li>\1</li>", body, flags=re.MULTILINE)
    body = re.sub(r"^---$", "<hr>", body, flags=re.MULTILINE)
    body = re.sub(r"`([^`]+)`", r"<code>\1</code>", body)
    body = body.replace("\n\n", "</p><p>")
    return body.replace("\n", "<br>")


def wrap_text_as_html(text: str, agent_name: str, agent_role: str) -> str:
    """Wrap markdown or plain text into a styled HTML page.

    Args:
        text: The agent's answer.
        agent_name: Display name shown in the badge; also picks the accent colour.
        agent_role: Role shown next to the badge.

    Returns:
        A complete HTML document.
    """
    color = AGENT_COLORS.get(agent_name.lower(), DEFAULT_AGENT_COLOR)
    body = _markdown_to_html(text)
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<style>
  * {{ margin: 0; padding: 0; box-sizing: border-box; }}
  body {{
    font-family: system-ui, -apple-system, sans-serif;
    color: #1e293b;
    background: #ffffff;
    padding: 2rem;
    line-height: 1.7;
    max-width: 800px;
    margin: 0 auto;
  }}
  .header {{
    display: flex;
    align-items: center;
    gap: 0.75rem;
    margin-bottom: 2rem;
    padding-bottom: 1rem;
    border-bottom: 2px solid {color}20;
  }}
  .header .badge {{
    background: {color}15;
    color: {color};
    font-size: 0.7rem;
    font-weight: 700;
    padding: 0.3rem 0.75rem;
    border-radius: 999px;
    text-transform: uppercase;
  }}
  .header .role {{ font-size: 0.8rem; color: #64748b; }}
  h1 {{ font-size: 1.5rem; color: #0f172a; margin: 1.5rem 0 0.75rem; }}
  h2 {{ font-size: 1.25rem; color: #0f172a; margin: 1.5rem 0 0.5rem; }}
  h3 {{ font-size: 1.05rem; color: #334155; margin: 1.25rem 0 0.4rem; }}
  p {{ margin: 0.5rem 0; color: #334155; }}
  ul {{ margin: 0.5rem 0 0.5rem 1.5rem; }}
  li {{ margin: 0.25rem 0; color: #475569; }}
  code {{ background: #f1f5f9; padding: 0.15rem 0.4rem; border-radius: 4px; color: {color}; }}
  hr {{ border: none; border-top: 1px solid #e2e8f0; margin: 1.5rem 0; }}
</style>
</head>
<body>
  <div class="header">
    <span class="badge">{html.escape(agent_name)}</span>
    <span class="role">{html.escape(agent_role)}</span>
  </div>
  <div class="content">
    <p>{body}</p>
  </div>
</body>
</html>"""


def rewrite_upload_urls(page: str, cdn_base_url: str) -> str:
    """Point relative ``/uploads/`` sources at the public asset host."""
    base = cdn_base_url.rstrip("/")
    return re.sub(r"""(src|href)=(["'])/uploads/""", rf"\1=\2{base}/uploads/", page)
