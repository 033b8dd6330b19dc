# Routes package init
"""
ProBD Backend - API Routes Package
==================================

Route Inventory:
    - auth.py:           /api/v1/auth/{guest,me,role}
    - meetings.py:       /api/v1/meetings/...        (video-call tokens, recording)
    - consultations.py:  /api/v1/consultations/...   (live WS, sessions, transcripts)
    - concierge.py:      /api/v1/concierge/{greeting,chat}
    - health.py:         /health

Routes stay thin: read the request, call a service, wrap the result in the
success envelope. Errors are raised as ProBDError subclasses and rendered by
the global handlers in main.py.
"""
