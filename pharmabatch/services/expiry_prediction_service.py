"""Expiry prediction over stored trend snapshots."""
import logging
from datetime import date, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from pharmabatch.config import settings
from pharmabatch.core.result import Ok, Result, validation_error
from pharmabatch.services import trend_analytics
from pharmabatch.services.expiry_trend_service import ExpiryTrendService
from pharmabatch.services.trend_analytics import Prediction


logger = logging.getLogger(__name__)

MAX_DAYS_AHEAD = 365


class ExpiryPredictionService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.trends = ExpiryTrendService(db)

    async def generate_predictions(
        self, days_ahead: int = 30, today: Optional[date] = None
    ) -> Result[Prediction]:
        if days_ahead < 1 or days_ahead > MAX_DAYS_AHEAD:
            return validation_error(
                f"days_ahead must be between 1 and {MAX_DAYS_AHEAD}", days_ahead=days_ahead
            )

        today = today or date.today()
        window = settings.PREDICTION_WINDOW_DAYS
        history = await self.trends.get_snapshots(today - timedelta(days=window), today)

        prediction = trend_analytics.predict(
            history,
            days_ahead,
            today,
            window_days=window,
            min_samples=settings.PREDICTION_MIN_SAMPLES,
        )
        if prediction.algorithm == trend_analytics.ALGORITHM_INSUFFICIENT_DATA:
            logger.warning(
                f"Insufficient history for predictions: {len(history)} snapshots "
                f"(need {settings.PREDICTION_MIN_SAMPLES})"
            )
        else:
            logger.info(
                f"Predicted {prediction.total_predicted} expiries over {days_ahead} days "
                f"(risk {prediction.risk_level})"
            )
        return Ok(prediction)
