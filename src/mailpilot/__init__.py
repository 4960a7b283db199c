"""MailPilot - multi-agent deliberation and action confirmation for inbound email."""

__version__ = "0.1.0"
