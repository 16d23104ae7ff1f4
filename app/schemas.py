from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel


class ValuationRequest(BaseModel):
    brand: str
    model: str
    year: Union[int, str]
    km: Optional[Union[int, str]] = None
    fuel: Optional[str] = None
    transmission: Optional[str] = None
    owner: Optional[str] = None
    city: Optional[str] = None
    condition: Optional[str] = None


class ValuationFactorOut(BaseModel):
    name: str
    impact: str
    amount: float
    positive: bool


class ValuationOut(BaseModel):
    estimated_price: float
    low: float
    high: float
    market_low: float
    market_high: float
    offer: float
    depreciation_rate: int
    market_demand: str
    factors: List[ValuationFactorOut]
    generated: bool


class DescriptionRequest(BaseModel):
    # Either vehicle_id or the raw listing fields
    vehicle_id: Optional[int] = None
    name: Optional[str] = None
    year: Optional[Union[int, str]] = None
    km: Optional[Union[int, str]] = None
    price: Optional[float] = None
    fuel: Optional[str] = None
    transmission: Optional[str] = None
    location: Optional[str] = None
    owner: Optional[str] = None
    category: Optional[str] = None
    features: Optional[List[Dict[str, Any]]] = None


class DescriptionOut(BaseModel):
    description: str
    generated: bool


class SentimentRequest(BaseModel):
    lead_id: int


class SentimentOut(BaseModel):
    sentiment: str
    confidence: int
    reasoning: str
    suggested_action: str
    generated: bool


class IntentSignalOut(BaseModel):
    category: str
    keyword: str
    matched_keywords: List[str]
    count: int
    urgency: str


class IntentReportOut(BaseModel):
    lead_id: int
    signals: List[IntentSignalOut]
    buyer_readiness: str
    summary: str
    messages_analyzed: int


class ReconciliationOut(BaseModel):
    success: bool
    run_id: str
    items_scanned: int
    items_updated: int
    items_failed: int
    vehicles_scored: int
    leads_analyzed: int
    started_at: str
    finished_at: Optional[str] = None
    duration_seconds: Optional[float] = None


class CircuitStatusOut(BaseModel):
    state: str
    failures: int
    retry_at: Optional[str] = None  # When an OPEN circuit admits its next probe


class CircuitStatusListOut(BaseModel):
    services: Dict[str, CircuitStatusOut]
