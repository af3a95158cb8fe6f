# src/common/schemas/request_models.py

from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field


class TrackingRequestConfig(BaseModel):
    source: str = Field(..., description="Off-chain source code executed by the oracle network")
    args: List[str] = Field(default_factory=list, examples=[["00340434726200036723"]])
    subscription_id: int = Field(..., gt=0, examples=[1305])
    request_gas: int = Field(..., gt=0, examples=[300000])
    # Inline mapping or list of secrets URLs; emptiness is rejected by the resolver
    secrets: Optional[Union[Dict[str, str], List[str]]] = None


class StoreArtifactResponse(BaseModel):
    id: str
    html_url: str
