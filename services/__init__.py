# services/__init__.py
"""
Domain service layer for the injury surveillance API.

This package holds application logic shared across blueprints:
  - identities / accounts: relational identity store, registration, login, lockout
  - access: role and ownership policy
  - injuries: injury reporting, listing, updates and resolution
  - status: daily GREEN / ORANGE / RED check-ins and team overviews
  - teams / players: read-only roster, team and player views
"""
