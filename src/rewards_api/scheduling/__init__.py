from .expiry import RedemptionExpiryScheduler, run_expiry_sweep

__all__ = ["RedemptionExpiryScheduler", "run_expiry_sweep"]
