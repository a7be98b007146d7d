"""
Credential helpers for the authorization gate.

- Access-token claims (epoch-millisecond expiry).
- HS512 / RS512 token verification via PyJWT.
- Environment and file driven configuration.
"""
