"""Durable job lifecycle: job store, checkpoint files and the job engine."""
