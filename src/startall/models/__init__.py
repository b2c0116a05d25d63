"""Data models for startall."""
