"""
Authentication for the timezone API.

Design goals:
- OAuth2 authorization-code login against one configured provider (Discord by default).
- Server-side sessions in Redis; the browser only holds an opaque token.
- Cookie-based session (HttpOnly) resolved once per request by middleware.
"""
