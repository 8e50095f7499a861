"""iMessage auto-reply agent: polls chat.db and answers allowlisted contacts in your voice."""

__version__ = "0.1.0"
