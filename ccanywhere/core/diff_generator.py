"""
HTML Diff Generator

Renders the git diff between base and head into a standalone HTML page
(``diff-<revision>.html``) inside the artifacts directory.
"""

import asyncio
import html
import logging
from typing import List, Optional

from ccanywhere.errors import BuildError, PipelineStage
from ccanywhere.types import BuildArtifact, BuildContext, CommitInfo
from ccanywhere.utils.git import GitRepository

logger = logging.getLogger(__name__)

PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{title}</title>
<style>
body {{ font-family: -apple-system, BlinkMacSystemFont, sans-serif; margin: 0; padding: 12px; }}
header {{ border-bottom: 1px solid #ddd; margin-bottom: 12px; }}
pre {{ font-family: ui-monospace, Menlo, monospace; font-size: 12px; overflow-x: auto; }}
.add {{ background: #e6ffed; }}
.del {{ background: #ffeef0; }}
.hunk {{ color: #6f42c1; }}
.file {{ font-weight: bold; background: #f6f8fa; }}
</style>
</head>
<body>
<header>
<h1>{title}</h1>
<p>{summary}</p>
</header>
<pre>{body}</pre>
</body>
</html>
"""


def artifact_url(file_name: str, context: BuildContext) -> str:
    """Public URL for a file in the artifacts directory."""
    base_url = context.config.artifacts.base_url
    if base_url:
        return f"{base_url}/{file_name}"
    return (context.artifacts_dir / file_name).resolve().as_uri()


def _line_class(line: str) -> Optional[str]:
    if line.startswith(("diff --git", "+++", "---")):
        return "file"
    if line.startswith("@@"):
        return "hunk"
    if line.startswith("+"):
        return "add"
    if line.startswith("-"):
        return "del"
    return None


def render_diff_html(diff_text: str, commit: CommitInfo, context: BuildContext) -> str:
    """Full HTML page for ``diff_text``. Every diff line is entity-escaped."""
    rows: List[str] = []
    for line in diff_text.splitlines():
        escaped = html.escape(line)
        css = _line_class(line)
        rows.append(f'<span class="{css}">{escaped}</span>' if css else escaped)

    title = f"Diff {context.revision} ({context.branch})"
    summary = f"{commit.message} by {commit.author}"
    return PAGE_TEMPLATE.format(
        title=html.escape(title),
        summary=html.escape(summary),
        body="\n".join(rows),
    )


class HtmlDiffGenerator:
    """Produces the ``diff`` BuildArtifact for a run."""

    def __init__(self, git: Optional[GitRepository] = None):
        self._git = git

    async def generate(self, base: str, head: str, context: BuildContext) -> BuildArtifact:
        git = self._git or GitRepository(context.work_dir)
        return await asyncio.to_thread(self._generate, git, base, head, context)

    def _generate(self, git: GitRepository, base: str, head: str, context: BuildContext) -> BuildArtifact:
        context.artifacts_dir.mkdir(parents=True, exist_ok=True)

        if not git.has_changes(base, head):
            raise BuildError("No changes detected between base and head", stage=PipelineStage.DIFF)

        diff_text = git.diff(base, head, context.config.build.exclude_paths)
        commit = git.commit_info(context.revision, fallback_timestamp=context.timestamp)
        page = render_diff_html(diff_text, commit, context)

        file_name = f"diff-{context.revision}.html"
        path = context.artifacts_dir / file_name
        try:
            path.write_text(page, encoding="utf-8")
        except OSError as e:
            raise BuildError(f"Failed to write diff page: {e}", stage=PipelineStage.DIFF) from e

        logger.debug(f"Wrote diff page {path}")
        return BuildArtifact(
            type="diff",
            url=artifact_url(file_name, context),
            path=str(path),
            size=path.stat().st_size,
            timestamp=context.timestamp,
        )
