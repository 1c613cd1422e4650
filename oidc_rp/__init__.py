"""OpenID Connect relying-party gateway with stateless, self-refreshing sessions."""
