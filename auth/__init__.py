"""auth/ -- Accounts, credentials, signup bootstrap, and the role authority.

Layer rule: auth/ imports from core/, store/, audit/, and the models modules
of teams/ and invitations/ only. It does NOT import from api/,
teams/service.py, or invitations/service.py. Those services import from
auth/, not the other way around. auth/dependencies.py is the one module that
may import fastapi.
"""
