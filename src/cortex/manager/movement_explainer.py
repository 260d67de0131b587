"""One-paragraph explanations of daily stock moves."""

import datetime
import logging

from cortex.db.client import DatabaseClient
from cortex.models.stock import MovementExplanation, MovementRequest
from cortex.tools.perplexity import PerplexityClient

logger = logging.getLogger(__name__)

NO_EXPLANATION = "No explanation available"
FALLBACK_EXPLANATION = "Unable to generate explanation at this time."

ANALYST_PROMPT = (
    "You are a hedge fund equity analyst. Provide brief, precise explanations for stock "
    "movements based ONLY on direct relevant news,assuming reporting to the portfolio "
    'manager. Maximum 50 words. If no specific relevant information exists, state "No '
    'relevant news found".'
)


def search_window(date: datetime.date) -> tuple[str, str]:
    """Day before and day after ``date`` as ``MM/DD/YYYY``."""
    one_day = datetime.timedelta(days=1)
    return (date - one_day).strftime("%m/%d/%Y"), (date + one_day).strftime("%m/%d/%Y")


def movement_question(company: str, request: MovementRequest) -> str:
    direction = "rise" if request.change_percent > 0 else "fall"
    return (
        f"Why did {company} ({request.symbol}) stock {direction} by "
        f"{abs(request.change_percent):.2f}% on {request.date.isoformat()}? Focus on: direct "
        "news events, earnings reports, or analyst rating changes. If no specific relevant "
        'news found, clearly state "No relevant news found".'
    )


class MovementExplainer:
    """Asks web search why a stock moved on a given day."""

    def __init__(self, db: DatabaseClient, perplexity: PerplexityClient) -> None:
        self.db = db
        self.perplexity = perplexity

    async def explain(self, request: MovementRequest) -> MovementExplanation:
        """Explain the move described by ``request``.

        Raises:
            UpstreamError: If web search is not configured or fails
        """
        company = await self._company_name(request.symbol, request.date)
        after, before = search_window(request.date)
        logger.info(f"Explaining {request.symbol} {request.change_percent}% on {request.date}")

        result = await self.perplexity.search(
            movement_question(company, request),
            system_prompt=ANALYST_PROMPT,
            max_tokens=100,
            temperature=0.1,
            return_images=False,
            return_related_questions=False,
            search_after_date_filter=after,
            search_before_date_filter=before,
            frequency_penalty=1,
            presence_penalty=0,
        )
        return MovementExplanation(explanation=result.content or NO_EXPLANATION)

    async def _company_name(self, symbol: str, date: datetime.date) -> str:
        try:
            return await self.db.get_company_name(symbol, date.isoformat()) or symbol
        except Exception as e:
            logger.warning(f"Company name lookup failed for {symbol}: {e}")
            return symbol
