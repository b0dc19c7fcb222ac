"""Application settings and structured logging."""
