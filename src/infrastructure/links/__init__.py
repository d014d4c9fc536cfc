from .signed_link import ReviewCustomer, ReviewTokenPayload, SignedLinkService

__all__ = ["ReviewCustomer", "ReviewTokenPayload", "SignedLinkService"]
