"""Session, project context and supporting services."""
