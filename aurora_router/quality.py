"""
Response quality heuristic for Aurora Router.

Providers do not report quality, so the learning loop estimates it from the
response itself: how the generation finished, whether its length is
plausible, and whether it contains the structure the request asked for.
The formula is a routing policy, not a measurement.
"""

from typing import Optional

from .features import RequestType
from .registry import CompletionResponse
from .utils import clamp

BASE_SCORE = 0.5
MIN_REASONABLE_CHARS = 20
MAX_REASONABLE_CHARS = 4000


def calculate_actual_quality(response: CompletionResponse,
                             request_type: RequestType = RequestType.OTHER,
                             user_satisfaction: Optional[float] = None) -> float:
    """Estimate the quality of a completed response in [0, 1].

    Scoring:
        - empty content scores 0.0 regardless of anything else
        - base 0.5
        - +0.2 when the model finished naturally (``stop``), -0.1 when it
          was cut off (``length``)
        - +0.15 when the content length is within 20..4000 characters
        - +0.15 when code was requested and the answer has a code fence,
          or when no code was requested
        - if the user rated the answer (1-5), the heuristic is averaged
          with ``rating / 5``

    Args:
        response: The provider response
        request_type: Classified type of the originating request
        user_satisfaction: Optional 1-5 rating from the user

    Returns:
        Quality score in [0, 1]
    """
    content = (response.content or "").strip()
    if not content:
        return 0.0

    score = BASE_SCORE
    if response.finish_reason == 'stop':
        score += 0.2
    elif response.finish_reason == 'length':
        score -= 0.1

    if MIN_REASONABLE_CHARS <= len(content) <= MAX_REASONABLE_CHARS:
        score += 0.15

    if request_type != RequestType.CODE_GENERATION or '```' in content:
        score += 0.15

    if user_satisfaction is not None:
        score = (score + clamp(user_satisfaction / 5.0)) / 2

    return round(clamp(score), 4)
