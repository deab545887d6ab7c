"""
IPVault API Package.

This package contains the Flask blueprints for the IPVault API.

Blueprints:
- core: Health, statistics, metrics, audit trail and platform fee administration
- assets: IP assets, licenses, revenue, royalties and transfers
- disputes: Disputes, arbitrator panels, decisions and resolution
- arbitrators: Arbitrator pool membership
"""

from api.arbitrators import arbitrators_bp
from api.assets import assets_bp
from api.core import core_bp
from api.disputes import disputes_bp

# Tuple format: (blueprint, url_prefix)
ALL_BLUEPRINTS = [
    (core_bp, ''),
    (assets_bp, ''),
    (disputes_bp, ''),
    (arbitrators_bp, ''),
]


def register_blueprints(app):
    """Register all blueprints with the Flask app."""
    for blueprint, url_prefix in ALL_BLUEPRINTS:
        app.register_blueprint(blueprint, url_prefix=url_prefix)
