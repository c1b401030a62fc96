"""Authentication module.

Provides bearer credentials for both the HTTP API and WebSocket connections:
- Signup/login against the durable identity store (bcrypt password hashes)
- JWT issuing and verification

Services:
    - ConnectionAuthenticator: validates tokens and binds identities.
    - IdentityService: signup, login and profile lookup.
"""
