"""Range compliance screening."""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List

from private_dca.solana_execution import request_json

logger = logging.getLogger(__name__)

RANGE_API_URL = "https://api.range.org/v1"
PROVIDER = "range"


@dataclass
class ScreeningResult:
    address: str
    chain: str
    is_sanctioned: bool
    risk_level: str  # low | medium | high | severe
    risk_score: int  # 0-100
    risk_factors: List[str] = field(default_factory=list)
    screened_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def map_risk_level(score: float) -> str:
    """Map Range's 1-10 score onto low/medium/high/severe."""
    if score >= 8:
        return "severe"
    if score >= 6:
        return "high"
    if score >= 4:
        return "medium"
    return "low"


def parse_risk_response(address: str, chain: str, payload: Dict[str, Any]) -> ScreeningResult:
    score = payload.get("riskScore") or 0
    label = str(payload.get("riskLevel") or "")
    malicious = payload.get("maliciousAddressesFound") or []

    is_sanctioned = "critical" in label.lower() or any(m.get("distance") == 0 for m in malicious)

    factors = []
    for m in malicious:
        tag = f" ({m['name_tag']})" if m.get("name_tag") else ""
        factors.append(f"{m.get('category')}{tag} - {m.get('distance')} hops away")
    if payload.get("reasoning"):
        factors.insert(0, payload["reasoning"])

    return ScreeningResult(
        address=address,
        chain=chain,
        is_sanctioned=is_sanctioned,
        risk_level=map_risk_level(score),
        risk_score=int(score * 10),
        risk_factors=factors,
        screened_at=datetime.now(timezone.utc).isoformat(),
    )


class RangeScreener:
    """Address risk lookups against the Range API."""

    def __init__(self, api_key: str, base_url: str = RANGE_API_URL):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    async def screen(self, address: str, chain: str = "solana") -> ScreeningResult:
        payload = await request_json(
            "GET",
            f"{self.base_url}/risk/address",
            params={"address": address, "network": chain},
            headers={"Authorization": f"Bearer {self.api_key}"},
            provider=PROVIDER,
        )
        result = parse_risk_response(address, chain, payload)
        logger.info(f"Screened {address[:8]}...: {result.risk_level} (sanctioned={result.is_sanctioned})")
        return result


def is_high_risk(result: ScreeningResult) -> bool:
    return result.is_sanctioned or result.risk_level in ("severe", "high")


def format_risk_report(result: ScreeningResult) -> str:
    lines = [
        f"Address: {result.address}",
        f"Chain: {result.chain}",
        f"Risk Level: {result.risk_level.upper()}",
        f"Risk Score: {result.risk_score}/100",
        f"Sanctioned: {'YES' if result.is_sanctioned else 'No'}",
    ]
    if result.risk_factors:
        lines.append("Risk Factors:")
        lines.extend(f"  - {factor}" for factor in result.risk_factors)
    return "\n".join(lines)
