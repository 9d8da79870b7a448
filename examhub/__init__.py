"""Public exam participation and scoring service."""
