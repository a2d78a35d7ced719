"""Special offer service exports."""

from .service import (  # noqa: F401
    DuplicateOfferCodeError,
    OfferErrorCode,
    OfferRedeemFailure,
    OfferRedeemSuccess,
    OfferService,
    OfferStats,
)
