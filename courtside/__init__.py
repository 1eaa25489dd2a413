"""
Courtside - tournament lifecycle service

Responsibilities:
- Participant registration with capacity, deadline and role checks
- Tournament lifecycle transitions (DRAFT -> OPEN -> ACTIVE -> COMPLETED / CANCELLED)
- Single-elimination first-round bracket generation as part of the start saga
- Match lifecycle and per-tournament player statistics
"""
