"""Conversation lanes: token budgeting, summarization, redaction and storage."""
