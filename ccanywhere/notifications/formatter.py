"""
Message Formatter

Stateless rendering of a NotificationMessage into plain text, markdown or
HTML. HTML output escapes every user-supplied string, links included.
"""

import html

from ccanywhere.notifications.types import FormattedMessage, NotificationFormat, NotificationMessage


def format_message(message: NotificationMessage, fmt: NotificationFormat) -> FormattedMessage:
    """Render ``message`` in the requested format (plain for anything unknown)."""
    if fmt == "markdown":
        return format_markdown(message)
    if fmt == "html":
        return format_html(message)
    return format_plain(message)


def format_plain(message: NotificationMessage) -> FormattedMessage:
    content = f"{message.title}\n\n"
    if message.diff_url:
        content += f"View Diff: {message.diff_url}\n"
    if message.preview_url:
        content += f"Preview: {message.preview_url}\n"
    if message.report_url:
        content += f"Test Report: {message.report_url}\n"
    if message.extra:
        content += f"\n{message.extra}"
    return FormattedMessage(title=message.title, content=content, format="plain")


def format_markdown(message: NotificationMessage) -> FormattedMessage:
    content = f"**{message.title}**\n\n"
    if message.diff_url:
        content += f"📝 [View Diff]({message.diff_url})\n"
    if message.preview_url:
        content += f"🌐 [Preview Site]({message.preview_url})\n"
    if message.report_url:
        content += f"📊 [Test Report]({message.report_url})\n"
    if message.extra:
        content += f"\n{message.extra}"
    return FormattedMessage(title=message.title, content=content, format="markdown")


def format_html(message: NotificationMessage) -> FormattedMessage:
    content = f"<strong>{escape_html(message.title)}</strong><br><br>"
    if message.diff_url:
        content += f'📝 <a href="{escape_html(message.diff_url)}">View Diff</a><br>'
    if message.preview_url:
        content += f'🌐 <a href="{escape_html(message.preview_url)}">Preview Site</a><br>'
    if message.report_url:
        content += f'📊 <a href="{escape_html(message.report_url)}">Test Report</a><br>'
    if message.extra:
        content += "<br>" + escape_html(message.extra).replace("\n", "<br>")
    return FormattedMessage(title=message.title, content=content, format="html")


def escape_html(text: str) -> str:
    """Escape &, <, >, double and single quotes."""
    return html.escape(text, quote=True)


def truncate(content: str, max_length: int) -> str:
    """Cut ``content`` to ``max_length`` characters, ending with '...'."""
    if len(content) <= max_length:
        return content
    suffix = "..."
    return content[: max(max_length - len(suffix), 0)] + suffix


def status_emoji(is_error: bool, title: str) -> str:
    if is_error:
        return "❌"
    lowered = title.lower()
    if "success" in lowered:
        return "✅"
    if "warning" in lowered:
        return "⚠️"
    if "deploy" in lowered:
        return "🚀"
    if "test" in lowered:
        return "🧪"
    return "🔔"
