"""
Personalized dashboard messages.

A ``TextGenerator`` writes a short encouraging note from the reader's
statistics. The generator is optional and allowed to fail: the service then
answers with a templated message built from the same statistics. Generated
messages are cached per user for four hours, keyed by the numbers that shaped
the prompt, so an unchanged library does not trigger new generation calls.
"""

from __future__ import annotations

import json
import logging
import random
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple, Union

import google.genai as genai
from google.genai import types

from .activity import ActivityItem
from .errors import ServiceError, ServiceErrorType, ServiceResult
from .filtering import calculate_progress
from .models import Book, ReadingState, Statistics, to_iso, utcnow

CACHE_TTL = timedelta(hours=4)

FALLBACK_MESSAGES = [
    "Keep up the great reading! Every page brings new discoveries.",
    "Your reading journey is inspiring. What story will you dive into next?",
    "Books are the gateway to endless worlds. Happy reading!",
    "Each book you read adds to your incredible literary adventure.",
    "Reading is not just a hobby, it's a superpower. Keep going!",
]

WELCOME_PROMPT = """You are Librarium's AI reading companion.
Librarium is an app for tracking your books and reading progress.

Generate a warm and encouraging first-time welcome message for {name}, who is new to Librarium and hasn't added any books yet.

Focus on:
1. Welcoming them to Librarium in a friendly, inviting tone
2. Encouraging them to add their first book
3. Staying warm, thoughtful and patient

The message should be 50-80 words, in second person, without technical jargon.
"""

PERSONAL_PROMPT = """You are Librarium's AI reading companion. Generate a personalized, encouraging message for {name} based on their reading data.

Reading Statistics:
- Total books in library: {books_in_library}
- Books finished: {total_books_read}
- Currently reading: {currently_reading}
- Books finished in the last 30 days: {reading_streak}
- Total pages read: {total_pages_read}

Currently Reading:
{currently_reading_lines}

Recently Finished:
{recently_finished_lines}

Favorite Genres: {genres}

Recent Activity: {activity}

Generate a warm, encouraging message (50-80 words) that:
1. Acknowledges their reading progress or achievements
2. Provides gentle motivation to continue reading
3. References specific aspects of their reading habits when relevant
4. Maintains an upbeat, supportive tone

Keep it conversational and inspiring, avoiding generic advice.
"""


class TextGenerator(Protocol):
    async def generate(self, prompt: str) -> str:
        ...


class GeminiTextGenerator:
    """Text generation through the Google Gemini API."""

    MODEL_NAME = "gemini-2.5-flash-lite"

    def __init__(
        self,
        api_key: str,
        model_name: Optional[str] = None,
        temperature: float = 0.7,
        max_output_tokens: int = 256,
    ):
        self.client = genai.Client(api_key=api_key)
        self.model_name = model_name or self.MODEL_NAME
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens

    async def generate(self, prompt: str) -> str:
        response = await self.client.aio.models.generate_content(
            model=self.model_name,
            contents=prompt,
            config=types.GenerateContentConfig(
                temperature=self.temperature,
                max_output_tokens=self.max_output_tokens,
            ),
        )
        if not response.text:
            raise ValueError("Empty response from text generator")
        return response.text.strip()


@dataclass(frozen=True)
class MessageContext:
    display_name: str
    books: Sequence[Book]
    stats: Statistics
    recent_activity: Sequence[ActivityItem] = ()

    @property
    def is_new_reader(self) -> bool:
        return not self.books


@dataclass(frozen=True)
class PersonalizedMessage:
    content: str
    created_at: datetime
    generated: bool


def build_prompt(context: MessageContext) -> str:
    if context.is_new_reader:
        return WELCOME_PROMPT.format(name=context.display_name)

    reading = [b for b in context.books if b.state == ReadingState.IN_PROGRESS]
    finished = sorted(
        (b for b in context.books if b.state == ReadingState.FINISHED and b.finished_at),
        key=lambda b: b.finished_at,
        reverse=True,
    )[:3]
    stats = context.stats
    return PERSONAL_PROMPT.format(
        name=context.display_name,
        books_in_library=stats.books_in_library,
        total_books_read=stats.total_books_read,
        currently_reading=stats.currently_reading,
        reading_streak=stats.reading_streak,
        total_pages_read=stats.total_pages_read,
        currently_reading_lines="\n".join(
            f'- "{b.title}" by {b.author} ({calculate_progress(b)}% complete)' for b in reading
        )
        or "No books currently being read",
        recently_finished_lines="\n".join(
            f'- "{b.title}" by {b.author}' + (f" (rated {b.rating}/5 stars)" if b.rating else "") for b in finished
        )
        or "No books finished recently",
        genres=", ".join(stats.favorite_genres) or "Not yet determined",
        activity=", ".join(item.type.value for item in context.recent_activity[:3]) or "No recent activity",
    )


def fallback_message(stats: Statistics, choose: Callable[[List[str]], str] = random.choice) -> str:
    if stats.reading_streak > 7:
        return (
            f"Amazing! {stats.reading_streak} books finished this month. "
            "Your dedication to reading is truly inspiring. Keep up this fantastic momentum!"
        )
    if stats.currently_reading > 0:
        plural = "s" if stats.currently_reading > 1 else ""
        return (
            f"You're currently reading {stats.currently_reading} book{plural}! "
            "That's wonderful progress. Every page brings new discoveries."
        )
    if stats.total_books_read > 0:
        plural = "s" if stats.total_books_read > 1 else ""
        return (
            f"Congratulations on finishing {stats.total_books_read} book{plural}! "
            "Your reading journey is building something beautiful."
        )
    return choose(FALLBACK_MESSAGES)


def cache_key(user_id: str, context: MessageContext) -> str:
    stats = context.stats
    latest = context.recent_activity[0].timestamp if context.recent_activity else None
    return json.dumps(
        {
            "user_id": user_id,
            "books_in_library": stats.books_in_library,
            "total_books_read": stats.total_books_read,
            "currently_reading": stats.currently_reading,
            "reading_streak": stats.reading_streak,
            "recent_activity": len(context.recent_activity),
            "last_activity": to_iso(latest),
        },
        sort_keys=True,
    )


class PersonalizedMessageService:
    def __init__(
        self,
        generator: Optional[TextGenerator] = None,
        clock: Callable[[], datetime] = utcnow,
        ttl: timedelta = CACHE_TTL,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
        choose: Callable[[List[str]], str] = random.choice,
    ):
        self.generator = generator
        self.clock = clock
        self.ttl = ttl
        self.logger = logger or logging.getLogger(__name__)
        self.choose = choose
        # latest (key, message) per user
        self._cache: Dict[str, Tuple[str, PersonalizedMessage]] = {}
        self._lock = threading.Lock()

    def _fresh(self, message: PersonalizedMessage) -> bool:
        return self.clock() - message.created_at <= self.ttl

    def _cached(self, user_id: str, key: str) -> Optional[PersonalizedMessage]:
        with self._lock:
            entry = self._cache.get(user_id)
            if entry and entry[0] == key and self._fresh(entry[1]):
                return entry[1]
            return None

    def _store(self, user_id: str, key: str, message: PersonalizedMessage) -> None:
        with self._lock:
            for stale in [uid for uid, (_, cached) in self._cache.items() if not self._fresh(cached)]:
                del self._cache[stale]
            self._cache[user_id] = (key, message)

    @property
    def cache_size(self) -> int:
        with self._lock:
            return len(self._cache)

    async def get_message(self, user_id: str, context: MessageContext) -> ServiceResult[PersonalizedMessage]:
        if not user_id:
            return ServiceResult.fail(ServiceError(ServiceErrorType.VALIDATION, "User ID is required"))
        key = cache_key(user_id, context)
        cached = self._cached(user_id, key)
        if cached:
            return ServiceResult.ok(cached)

        if self.generator is None:
            return ServiceResult.ok(self._fallback(context))

        try:
            content = await self.generator.generate(build_prompt(context))
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("Personalized message generation failed for %s: %s", user_id, exc)
            return ServiceResult.ok(
                self._fallback(context),
                warnings=(
                    ServiceError(
                        ServiceErrorType.NETWORK,
                        "Showing a standard message while personalized messages are unavailable.",
                        str(exc),
                    ),
                ),
            )

        message = PersonalizedMessage(content=content, created_at=self.clock(), generated=True)
        self._store(user_id, key, message)
        return ServiceResult.ok(message)

    def _fallback(self, context: MessageContext) -> PersonalizedMessage:
        return PersonalizedMessage(
            content=fallback_message(context.stats, self.choose),
            created_at=self.clock(),
            generated=False,
        )
