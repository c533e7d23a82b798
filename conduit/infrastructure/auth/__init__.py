"""OAuth token management and credential stores."""
