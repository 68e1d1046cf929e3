"""Fetch invoice attachments from Gmail and file them in Google Drive."""

__version__ = "0.1.0"
