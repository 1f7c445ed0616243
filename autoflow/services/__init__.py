"""Services: outbound HTTP, token refresh and credential resolution."""
