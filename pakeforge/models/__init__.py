"""Persisted data models."""

from pakeforge.models.project import Project, now_millis
