"""
Validation rules for vote creation and ballots.

The ``validate_*`` functions are pure predicates. The ``check_*`` guards
raise ValidationError naming the first offending field and run before any
store transaction writes, so a rejected request never leaves partial data.
"""

from collections.abc import Sequence
from typing import Any, Optional

from core.config import settings
from core.exceptions import ValidationError
from schemas.vote import VoteCreate

MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500
MIN_OPTIONS = 2
MAX_OPTIONS = 20
MAX_OPTION_LENGTH = 40
MIN_SCORE = 0
MAX_SCORE = 5
MAX_FINGERPRINT_LENGTH = 255


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_options(options: Optional[Sequence[Any]]) -> bool:
    """2-20 options, each a string of 1-40 characters."""
    if options is None or isinstance(options, str):
        return False
    if not MIN_OPTIONS <= len(options) <= MAX_OPTIONS:
        return False
    return all(isinstance(opt, str) and 1 <= len(opt) <= MAX_OPTION_LENGTH for opt in options)


def validate_unique_options(options: Sequence[str]) -> bool:
    """No two options may differ only by case."""
    lowered = [opt.lower() for opt in options]
    return len(set(lowered)) == len(lowered)


def validate_scores(scores: Optional[Sequence[Any]], option_count: Optional[int] = None) -> bool:
    """
    Non-empty list of integer scores in [0, 5].

    When ``option_count`` is given the list must also cover every option.
    """
    if not scores or isinstance(scores, str):
        return False
    if option_count is not None and len(scores) != option_count:
        return False
    return all(_is_int(score) and MIN_SCORE <= score <= MAX_SCORE for score in scores)


def validate_duration(hours: Any, minutes: Any) -> bool:
    """At least one minute, at most 30 days, minutes below 60."""
    if not (_is_int(hours) and _is_int(minutes)):
        return False
    if hours < 0 or not 0 <= minutes <= 59:
        return False
    total = hours * 60 + minutes
    return 0 < total <= settings.MAX_VOTE_DURATION_MINUTES


def validate_title(title: Any) -> bool:
    return isinstance(title, str) and len(title) <= MAX_TITLE_LENGTH and bool(title.strip())


def validate_description(description: Any) -> bool:
    return description is None or (
        isinstance(description, str) and len(description) <= MAX_DESCRIPTION_LENGTH
    )


def validate_fingerprint(fingerprint: Any) -> bool:
    return isinstance(fingerprint, str) and 1 <= len(fingerprint) <= MAX_FINGERPRINT_LENGTH


def check_fingerprint(fingerprint: Any) -> None:
    if not validate_fingerprint(fingerprint):
        raise ValidationError(
            "user_fingerprint", f"must be 1-{MAX_FINGERPRINT_LENGTH} characters"
        )


def check_vote_request(request: VoteCreate) -> None:
    """Raise ValidationError for the first invalid field of a creation request."""
    if not validate_title(request.title):
        raise ValidationError(
            "title", f"must be 1-{MAX_TITLE_LENGTH} characters and not blank"
        )
    if not validate_description(request.description):
        raise ValidationError(
            "description", f"must be at most {MAX_DESCRIPTION_LENGTH} characters"
        )
    if not validate_options(request.options):
        raise ValidationError(
            "options",
            f"need {MIN_OPTIONS}-{MAX_OPTIONS} options of 1-{MAX_OPTION_LENGTH} characters",
        )
    if not validate_unique_options(request.options):
        raise ValidationError("options", "options must be unique")
    if not validate_duration(request.duration_hours, request.duration_minutes):
        raise ValidationError(
            "duration",
            "must be between 1 minute and "
            f"{settings.MAX_VOTE_DURATION_MINUTES // (24 * 60)} days, minutes 0-59",
        )


def check_ballot_scores(scores: Sequence[Any], option_count: Optional[int] = None) -> None:
    """Raise ValidationError if the scores cannot be cast."""
    if not validate_scores(scores):
        raise ValidationError("scores", f"each score must be {MIN_SCORE}-{MAX_SCORE}")
    if option_count is not None and len(scores) != option_count:
        raise ValidationError(
            "scores", f"expected {option_count} scores, got {len(scores)}"
        )
