"""External integration adapters."""

from .email import EmailService, EmailTransport, render_template

__all__ = [
    "EmailService",
    "EmailTransport",
    "render_template",
]
