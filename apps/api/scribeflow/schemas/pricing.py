"""Service tier and add-on enums shared by balance and job schemas."""

from enum import Enum


class ServiceTier(str, Enum):
    AI = "ai"
    HYBRID = "hybrid"
    HUMAN = "human"


class AddOn(str, Enum):
    RUSH_DELIVERY = "rush_delivery"
    MULTIPLE_SPEAKERS = "multiple_speakers"


class FundingSource(str, Enum):
    TRIAL = "trial"
    PACKAGE = "package"
    WALLET = "wallet"
