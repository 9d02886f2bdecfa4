from .replay import ReplayGuard

__all__ = ["ReplayGuard"]
