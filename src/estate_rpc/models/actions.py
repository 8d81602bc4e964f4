"""
Action catalogue and topic routing.

Every action string belongs to exactly one topic; the publisher picks the
request queue from the topic.
"""


class Topic:
    AUTH = "auth"
    PROPERTY = "property"
    MARKET = "market"

    ALL = (AUTH, PROPERTY, MARKET)


class AuthAction:
    SIGNUP = "signup"
    LOGIN = "login"
    REFRESH_TOKEN = "refresh_token"
    LOGOUT = "logout"
    VERIFY_AUTH = "verify_auth"
    FORGOT_PASSWORD = "forgotPassword"
    UPDATE_PROFILE = "updateProfile"


class PropertyAction:
    SAVE = "saveProperty"
    LIST = "getSavedProperties"
    DELETE = "deleteSavedProperty"


class MarketAction:
    SEARCH = "rentcast_search"
    PROPERTY_DETAILS = "rentcast_getPropertyDetails"
    RENTAL_ESTIMATE = "rentcast_getRentalEstimate"
    MARKET_DATA = "rentcast_getMarketData"
    GEOCODE = "maps_geocode"
    GEOCODE_SHORT = "geocode"
    STREET_VIEW = "maps_streetView"
    STREET_VIEW_SHORT = "streetView"


def _actions(cls: type) -> list[str]:
    return [v for k, v in vars(cls).items() if k.isupper() and isinstance(v, str)]


ACTION_TOPICS: dict[str, str] = {
    **{a: Topic.AUTH for a in _actions(AuthAction)},
    **{a: Topic.PROPERTY for a in _actions(PropertyAction)},
    **{a: Topic.MARKET for a in _actions(MarketAction)},
}


def topic_for(action: str, default: str = Topic.AUTH) -> str:
    """Topic whose queue serves ``action``. Unknown actions go to ``default``."""
    return ACTION_TOPICS.get(action, default)
