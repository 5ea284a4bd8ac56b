"""
Notification Types

The logical message handed to every channel, and its rendered form.
"""

from dataclasses import dataclass, field
from typing import Literal, Optional

from ccanywhere.types import now_ms

NotificationFormat = Literal["plain", "markdown", "html"]


@dataclass(frozen=True)
class NotificationMessage:
    """One logical message; each channel renders it in its own format."""
    title: str
    diff_url: Optional[str] = None
    preview_url: Optional[str] = None
    report_url: Optional[str] = None
    extra: Optional[str] = None
    is_error: bool = False
    timestamp: int = field(default_factory=now_ms)

    @classmethod
    def success(
        cls,
        revision: str,
        diff_url: Optional[str] = None,
        preview_url: Optional[str] = None,
        report_url: Optional[str] = None,
        extra: Optional[str] = None,
    ) -> "NotificationMessage":
        """Build-success message titled with the short revision."""
        from ccanywhere.notifications.formatter import status_emoji

        return cls(
            title=f"{status_emoji(False, 'success')} Build Success #{revision[:7]}",
            diff_url=diff_url,
            preview_url=preview_url,
            report_url=report_url,
            extra=extra,
        )

    @classmethod
    def failure(cls, revision: str, error: str, step: Optional[str] = None) -> "NotificationMessage":
        """Build-failure message naming the failing step."""
        from ccanywhere.notifications.formatter import status_emoji

        extra = f"Failed at step: {step}\nError: {error}" if step else f"Error: {error}"
        return cls(
            title=f"{status_emoji(True, 'error')} Build Failed #{revision[:7]}",
            extra=extra,
            is_error=True,
        )


@dataclass(frozen=True)
class FormattedMessage:
    title: str
    content: str
    format: NotificationFormat
