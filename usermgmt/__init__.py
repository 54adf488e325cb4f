"""User management API: JWT sessions with rotating refresh tokens and optional OIDC delegation."""
