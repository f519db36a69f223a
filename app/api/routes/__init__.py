"""
API Routes Package
"""
from . import (
    health,
    auth,
    users,
    facebook,
    ad_accounts,
    campaigns,
    insights,
    ad_library,
    payments,
)
