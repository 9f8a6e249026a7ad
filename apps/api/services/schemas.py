"""
Domain schemas shared by the calibration and generation services.
"""

from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class CalibrationAnswer(BaseModel):
    """One quiz answer. Free text, or the list of selected options."""
    model_config = ConfigDict(populate_by_name=True)

    question_id: str = Field(alias="questionId")
    answer: Union[str, List[str], None] = None
    weight: Optional[float] = None


class Range(BaseModel):
    min: float
    max: float

    @model_validator(mode="after")
    def _check_order(self):
        if self.min > self.max:
            raise ValueError(f"range min {self.min} exceeds max {self.max}")
        return self

    @property
    def midpoint(self) -> float:
        # Rounded so float noise (0.4 + 0.8) does not leak into stored parameters.
        return round((self.min + self.max) / 2, 6)


class ParameterRanges(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    temperature: Range
    top_p: Range = Field(alias="topP")
    max_tokens: Range = Field(alias="maxTokens")
    frequency_penalty: Range = Field(alias="frequencyPenalty")


class EffectiveParameters(BaseModel):
    """Concrete numeric parameters used for one generation request."""
    model_config = ConfigDict(populate_by_name=True)

    temperature: float
    top_p: float = Field(alias="topP")
    max_tokens: int = Field(alias="maxTokens")
    frequency_penalty: float = Field(alias="frequencyPenalty")
    presence_penalty: float = Field(default=0.0, alias="presencePenalty")


class ResponseMetrics(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    length: int  # word count
    creativity: float
    coherence: float
    structure: float
    completeness: float
    lexical_diversity: float = Field(alias="lexicalDiversity")


class GenerationResponse(BaseModel):
    """One synthesized reply as stored inside an experiment row."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    text: str
    parameters: EffectiveParameters
    metrics: ResponseMetrics
    timestamp: int  # epoch ms
    prompt: str
    latency_ms: int


class GenerateRequest(BaseModel):
    """Inbound generation request body."""
    model_config = ConfigDict(populate_by_name=True)

    prompt: str = ""
    calibration_id: Optional[str] = Field(default=None, alias="calibrationId")
    parameters: Optional[EffectiveParameters] = None
