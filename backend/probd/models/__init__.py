from probd.models.consultation import ConsultationSession, TranscriptEntry

__all__ = ["ConsultationSession", "TranscriptEntry"]
