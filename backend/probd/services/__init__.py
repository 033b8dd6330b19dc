# Services package init
"""
ProBD Backend - Services Layer
==============================

What:  Business logic between the routes (HTTP / WebSocket) and the hosted
       services the product depends on (Postgres, Stream Video, Gemini).

Service Inventory:
    - IdentityService:        guest sessions, bearer tokens, X-User-ID fallback
    - StreamVideoService:     Stream user tokens, call creation, recording
    - MeetingService:         host / member / guest join flows
    - LiveAudioGateway:       Gemini Live native-audio channel
    - ConsultationStore:      session + transcript persistence
    - LiveConsultation:       per-connection live session orchestrator
    - ChatLLMService (abstract) / GeminiConciergeService: concierge chat
    - CircuitBreaker:         shared resilience primitive
"""
