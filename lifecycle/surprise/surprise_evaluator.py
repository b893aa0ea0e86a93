"""
Surprise Evaluator - beat / miss / in-line classification of a release.
"""

from typing import Any, Optional
from pydantic import BaseModel

from calendar_core.base.component import BaseComponent
from calendar_core.base.models import SurpriseCategory
from calendar_core.utils.data_validation import DataValidator


class SurpriseAssessment(BaseModel):
    """Surprise category plus the raw deviation from forecast."""
    
    category: SurpriseCategory
    percent: float
    direction: str


class SurpriseEvaluator(BaseComponent):
    """
    Compare an actual value against its forecast.
    
    Thresholds are multiples of the forecast magnitude: beyond the minor
    multiple the release is a minor surprise, beyond the major multiple a
    major one, in either direction.
    """
    
    def __init__(self, minor_multiple: Optional[float] = None, major_multiple: Optional[float] = None):
        super().__init__(name="SurpriseEvaluator", config_section="surprise")
        self.minor_multiple = float(minor_multiple if minor_multiple is not None
                                    else self.get_config_value("minor_multiple", 1.005))
        self.major_multiple = float(major_multiple if major_multiple is not None
                                    else self.get_config_value("major_multiple", 1.15))
        
        if not 1.0 <= self.minor_multiple <= self.major_multiple:
            raise ValueError(
                f"Surprise multiples must satisfy 1 <= minor <= major, "
                f"got {self.minor_multiple} and {self.major_multiple}"
            )
    
    def evaluate(self, actual: Any, forecast: Any) -> Optional[SurpriseCategory]:
        """
        Classify a release against its forecast.
        
        Args:
            actual: Released value, numeric or decorated string
            forecast: Consensus forecast, numeric or decorated string
            
        Returns:
            SurpriseCategory, or None when either side is not numeric
        """
        actual_value = DataValidator.parse_numeric(actual)
        forecast_value = DataValidator.parse_numeric(forecast)
        
        if actual_value is None or forecast_value is None:
            return None
        
        deviation = actual_value - forecast_value
        magnitude = abs(forecast_value)
        
        if deviation > magnitude * (self.major_multiple - 1):
            return SurpriseCategory.MAJOR_UPSIDE
        if deviation > magnitude * (self.minor_multiple - 1):
            return SurpriseCategory.MINOR_UPSIDE
        if deviation < -magnitude * (self.major_multiple - 1):
            return SurpriseCategory.MAJOR_DOWNSIDE
        if deviation < -magnitude * (self.minor_multiple - 1):
            return SurpriseCategory.MINOR_DOWNSIDE
        return SurpriseCategory.IN_LINE
    
    def assess(self, actual: Any, forecast: Any) -> Optional[SurpriseAssessment]:
        """
        Category together with the percentage deviation and its direction.
        
        The percentage is relative to |forecast| and rounded to two decimals;
        it is 0 when the forecast is zero.
        """
        category = self.evaluate(actual, forecast)
        if category is None:
            return None
        
        actual_value = DataValidator.parse_numeric(actual)
        forecast_value = DataValidator.parse_numeric(forecast)
        percent = 0.0
        if forecast_value:
            percent = round((actual_value - forecast_value) / abs(forecast_value) * 100, 2)
        
        if category in (SurpriseCategory.MAJOR_UPSIDE, SurpriseCategory.MINOR_UPSIDE):
            direction = "beat"
        elif category in (SurpriseCategory.MAJOR_DOWNSIDE, SurpriseCategory.MINOR_DOWNSIDE):
            direction = "miss"
        else:
            direction = "inline"
        
        return SurpriseAssessment(category=category, percent=percent, direction=direction)
