"""
OpenID Connect / OAuth2 authorization server
--------------------------------------------
Features:
- Authorization Code grant with PKCE (S256 / plain), single-use codes
- Refresh tokens (mandatory rotation, reuse detection revokes the chain)
- RS256-signed access tokens and ID tokens, JWKS + discovery documents
- Scope-filtered ID token / userinfo claims (openid, profile, email)

Stack:
- Flask
- Authlib (JOSE, PKCE helpers, OAuth2 error types)
- SQLAlchemy (SQLite by default)

Run:
  pip install -e .
  authcore add-user 1 alice --name Alice --email alice@example.com --email-verified
  authcore add-client demo-web --public --redirect-uri http://localhost:3000/callback
  python server.py  # starts on http://127.0.0.1:8000

The authorization endpoint expects the resource owner to be signed in
already: a login app sets ``session['user_id']`` (or set LOGIN_URL to be
redirected there), user registration and password checks live elsewhere.
"""
from __future__ import annotations

import logging

from authcore.config import Settings
from authcore.web import create_app

settings = Settings.from_env()
logging.basicConfig(level=settings.log_level, format='%(asctime)s %(levelname)s %(name)s: %(message)s')

app = create_app(settings)

if __name__ == '__main__':
    base = settings.issuer
    print(f"""
Quick test steps:
  1) authcore pkce  -> code_verifier + code_challenge
  2) Open the authorize URL in a browser (signed in), for example:
     {base}/oauth/authorize?client_id=demo-web&response_type=code&scope=openid%20profile%20email&redirect_uri=http%3A%2F%2Flocalhost%3A3000%2Fcallback&code_challenge_method=S256&code_challenge=<CHALLENGE>&state=xyz
  3) Exchange the code:
     curl -X POST {base}/oauth/token \\
          -d 'grant_type=authorization_code' \\
          -d 'client_id=demo-web' \\
          -d 'code_verifier=<VERIFIER>' \\
          -d 'code=<CODE_FROM_CALLBACK>' \\
          -d 'redirect_uri=http://localhost:3000/callback'
  4) Call userinfo:
     curl {base}/oauth/userinfo -H 'Authorization: Bearer <access_token>'
""")
    app.run(host=settings.host, port=settings.port)
