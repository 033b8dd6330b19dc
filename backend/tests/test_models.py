"""
ProBD Backend - ORM Model Tests
===============================

What we test:
    ✅ Models import and map cleanly (a column named `text` included)
    ✅ Server-side defaults match the migration
"""

from probd.models import ConsultationSession, TranscriptEntry


class TestTranscriptEntryModel:

    def test_text_column_is_mapped(self):
        entry = TranscriptEntry(sequence=1, speaker="user", text="Assalamu alaikum")

        assert entry.text == "Assalamu alaikum"
        assert "text" in TranscriptEntry.__table__.columns

    def test_server_defaults(self):
        columns = TranscriptEntry.__table__.columns

        assert str(columns["id"].server_default.arg) == "gen_random_uuid()"
        assert str(columns["created_at"].server_default.arg) == "CURRENT_TIMESTAMP"


class TestConsultationSessionModel:

    def test_defaults_and_relationship(self):
        columns = ConsultationSession.__table__.columns

        assert str(columns["status"].server_default.arg) == "'idle'"
        assert str(columns["is_guest"].server_default.arg) == "false"
        assert ConsultationSession.entries.property.mapper.class_ is TranscriptEntry
