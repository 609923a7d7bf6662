from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class HoldingRecord(_CamelModel):
    """One valued entity in the public holdings feed."""

    id: int
    company: str
    ticker: str
    exchange: str
    headquarters: Optional[str] = None
    region: Optional[str] = None
    btc_holdings: float
    usd_value: float
    # None means "insufficient history", distinct from 0.0.
    delta_btc: Optional[float] = None
    cost_basis_usd: Optional[float] = None
    last_disclosed: Optional[date] = None
    source: Optional[str] = None
    verified: bool = False
    market_cap: Optional[float] = None
    shares_outstanding: Optional[float] = None
    updated_at: datetime


class HoldingsSummary(_CamelModel):
    total_btc: float
    total_usd: float
    verified_count: int
    total_companies: int
    priced_at: datetime
    btc_usd_rate: float


class HoldingsData(_CamelModel):
    holdings: List[HoldingRecord]
    summary: HoldingsSummary


class ApiResponse(BaseModel):
    """Success envelope: `{success, data}`."""

    success: bool = True
    data: Any = None


class ApiError(BaseModel):
    """Error envelope: `{error}`."""

    error: str


def _dump(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True)
    return data


def ok(data: Any = None) -> Dict[str, Any]:
    """Create a success envelope as a JSON-serializable dict."""

    return ApiResponse(success=True, data=_dump(data)).model_dump(mode="json")


def fail(message: str) -> Dict[str, Any]:
    """Create an error envelope as a JSON-serializable dict."""

    return ApiError(error=message).model_dump(mode="json")
