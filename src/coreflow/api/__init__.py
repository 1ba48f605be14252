"""HTTP surface: recruiter API, public offer-response API and app factory."""

from coreflow.api.main import create_app

__all__ = ["create_app"]
