"""Model boundary — the opaque language-model call."""
