from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

from config.constants import INTEREST_OPTIONS, MARKET_OBSTACLE_OPTIONS


def _text(data: Dict[str, Any], key: str) -> str:
    raw = data.get(key)
    return str(raw).strip() if raw is not None else ""


@dataclass
class ContactPayload:
    """Validated contact-details form used to link a respondent to answers."""

    fullName: str
    companyName: str
    interest: str
    marketObstacle: str
    email: Optional[str] = None
    phone: Optional[str] = None
    businessType: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContactPayload":
        """Validate and construct a ContactPayload from a raw dict.

        Required: fullName, companyName, interest, marketObstacle. The two
        discriminators must be declared option values. Blank email, phone
        and businessType are treated as absent.
        """
        if not isinstance(data, dict):
            raise ValueError("payload must be an object")

        full_name = _text(data, "fullName")
        company_name = _text(data, "companyName")
        if not full_name:
            raise ValueError("fullName is required")
        if not company_name:
            raise ValueError("companyName is required")

        interest = _text(data, "interest")
        if interest not in INTEREST_OPTIONS:
            raise ValueError("interest is required")

        obstacle = _text(data, "marketObstacle")
        if obstacle not in MARKET_OBSTACLE_OPTIONS:
            raise ValueError("marketObstacle is required")

        business_type = _text(data, "businessType") or None

        return cls(
            fullName=full_name,
            companyName=company_name,
            interest=interest,
            marketObstacle=obstacle,
            email=_text(data, "email") or None,
            phone=_text(data, "phone") or None,
            businessType=business_type,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def identity_fields(self) -> Dict[str, Any]:
        return {
            "fullName": self.fullName,
            "companyName": self.companyName,
            "email": self.email,
            "phone": self.phone,
        }


@dataclass
class ApiResponse:
    """Canonical JSON body for HTTP responses."""

    output: Any
    message: Optional[str] = None
    errors: Optional[list] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"output": self.output}
        if self.message is not None:
            data["message"] = self.message
        if self.errors is not None:
            data["errors"] = self.errors
        return data
