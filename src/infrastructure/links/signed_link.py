"""
Signed Review Links
===================

Review links carry a JWT (HS256) with the business, the customer contact
details from the order and the notification that produced the link. The
landing page needs no database lookup to know who is reviewing, and a click
can be attributed back to the notification.

Link format: {FRONTEND_URL}/r/{token}
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import jwt

from ...domain.models import Platform, utc_now

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


@dataclass
class ReviewCustomer:
    email: Optional[str] = None
    phone: Optional[str] = None
    name: Optional[str] = None

    def to_claim(self) -> dict:
        return {k: v for k, v in (("email", self.email), ("phone", self.phone), ("name", self.name)) if v}


@dataclass
class ReviewTokenPayload:
    business_id: str
    customer: Optional[ReviewCustomer] = None
    order_id: Optional[str] = None
    source_platform: Optional[str] = None
    notification_id: Optional[str] = None

    def to_claims(self) -> dict:
        claims = {"businessId": self.business_id}
        if self.customer:
            customer = self.customer.to_claim()
            if customer:
                claims["customer"] = customer
        if self.order_id:
            claims["orderId"] = self.order_id
        if self.source_platform:
            claims["sourcePlatform"] = self.source_platform
        if self.notification_id:
            claims["notificationId"] = self.notification_id
        return claims

    @classmethod
    def from_claims(cls, claims: dict) -> "ReviewTokenPayload":
        customer = claims.get("customer")
        return cls(
            business_id=claims["businessId"],
            customer=ReviewCustomer(**{
                k: customer.get(k) for k in ("email", "phone", "name")
            }) if isinstance(customer, dict) else None,
            order_id=claims.get("orderId"),
            source_platform=claims.get("sourcePlatform"),
            notification_id=claims.get("notificationId"),
        )


class SignedLinkService:
    """
    Usage:
        links = SignedLinkService(secret, "https://app.example.com")
        url = links.build_link(ReviewTokenPayload(business_id="b1", notification_id="n1"))
        payload = links.verify(token)   # None when tampered or expired
    """

    def __init__(self, secret: str, frontend_url: str, expiry_days: int = 60):
        self._secret = secret
        self._frontend_url = frontend_url.rstrip("/")
        self._expiry = timedelta(days=expiry_days)

    def generate_token(self, payload: ReviewTokenPayload) -> str:
        if payload.source_platform and payload.source_platform not in {p.value for p in Platform}:
            raise ValueError(f"Unknown source platform: {payload.source_platform}")

        now = utc_now()
        claims = payload.to_claims()
        claims["iat"] = now
        claims["exp"] = now + self._expiry
        return jwt.encode(claims, self._secret, algorithm=ALGORITHM)

    def build_link(self, payload: ReviewTokenPayload) -> str:
        return f"{self._frontend_url}/r/{self.generate_token(payload)}"

    def verify(self, token: str) -> Optional[ReviewTokenPayload]:
        try:
            claims = jwt.decode(token, self._secret, algorithms=[ALGORITHM])
        except jwt.ExpiredSignatureError:
            logger.info("Review token expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid review token: {e}")
            return None

        if "businessId" not in claims:
            logger.warning("Review token without businessId")
            return None
        return ReviewTokenPayload.from_claims(claims)

    @staticmethod
    def is_signed_token(token: str) -> bool:
        """JWTs start with base64 '{"' and contain dots; plain business ids do not."""
        return "." in token and token.startswith("eyJ")
