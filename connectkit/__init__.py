"""ConnectKit multi-tenant contacts API."""
