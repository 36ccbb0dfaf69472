import asyncio
import logging

from librarium.config import LibraryConfig
from librarium.library import (
    BookDraft,
    ErrorCategory,
    ErrorLogger,
    ErrorSeverity,
    LibraryProvider,
    PersonalizedMessageService,
    ReadingState,
    session_logger,
)
from librarium.library.errors import create_validation_error


class ExplodingService:
    clock = None

    def get_book(self, user_id, book_id):
        raise RuntimeError("connection reset")


class FakeGenerator:
    async def generate(self, prompt):
        return "Welcome aboard!"


def test_provider_presents_business_failures(service):
    provider = LibraryProvider(service)
    added = provider.add_book("u1", BookDraft("Dune", "Frank Herbert", 400))
    assert added.success

    illegal = provider.update_book_state("u1", added.data.id, ReadingState.FINISHED)
    assert not illegal.success
    assert illegal.error.category == ErrorCategory.BUSINESS_LOGIC
    assert illegal.error.user_message == "Cannot transition from not_started to finished"
    assert illegal.error.context["operation"] == "update_book_state"
    assert illegal.error.context["book_id"] == added.data.id

    missing = provider.get_book("u1", "nope")
    assert missing.error.type == "not_found"
    assert missing.error.severity == ErrorSeverity.LOW


def test_provider_classifies_unexpected_exceptions(caplog):
    provider = LibraryProvider(ExplodingService(), messages=PersonalizedMessageService())
    with caplog.at_level(logging.INFO):
        result = provider.get_book("u1", "b1")
    assert not result.success
    assert result.error.category == ErrorCategory.UNKNOWN
    assert result.error.type == "RuntimeError"
    assert result.error.retryable is True
    assert any(r.levelno == logging.ERROR and result.error.id in r.getMessage() for r in caplog.records)


def test_personalized_message_for_new_reader(service):
    provider = LibraryProvider(service, messages=PersonalizedMessageService(FakeGenerator(), clock=service.clock))
    result = asyncio.run(provider.personalized_message("u1", "Ada"))
    assert result.success
    assert result.data.content == "Welcome aboard!"
    assert result.data.generated is True


def test_error_logger_levels_follow_severity(caplog):
    error_logger = ErrorLogger(logging.getLogger("librarium.test"))
    with caplog.at_level(logging.INFO, logger="librarium.test"):
        error_logger.log_error(create_validation_error("bad page"), {"book_id": "b1"})
        error_logger.log_user_action("add_book", {"title": "Dune"})
    assert [r.levelno for r in caplog.records] == [logging.INFO, logging.INFO]
    assert "book_id" in caplog.records[0].getMessage()
    assert "user action: add_book" in caplog.records[1].getMessage()


def test_session_logger_prefixes_scope(caplog):
    log = session_logger("librarium.session", session_id="s1", user_id="u1")
    with caplog.at_level(logging.INFO, logger="librarium.session"):
        log.info("opened")
    assert caplog.records[0].getMessage() == "[session=s1 user=u1] opened"
    assert caplog.records[0].session_id == "s1"


def test_config_from_env():
    config = LibraryConfig.from_env(
        {
            "DATABASE_URL": "sqlite+pysqlite:///:memory:",
            "WHOOSH_DIR": "",
            "USE_BATCH_WRITES": "true",
            "FAVORITE_GENRES_LIMIT": "5",
            "GEMINI_API_KEY": "",
        }
    )
    assert config.database_url == "sqlite+pysqlite:///:memory:"
    assert config.whoosh_index_dir is None
    assert config.use_batch_writes is True
    assert config.queue_statistics_refresh is False
    assert config.favorite_genres_limit == 5
    assert config.gemini_api_key is None
    assert config.event_retention_days == 365
