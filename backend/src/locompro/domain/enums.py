"""Domain enumerations for the LoCompro marketplace.

All enums use the (str, Enum) pattern to ensure JSON serialization compatibility.
"""

from enum import Enum


class BuyRequestStatus(str, Enum):
    """Whether a buy request still accepts offers."""

    ACTIVE = "active"
    CLOSED = "closed"


class ItemCondition(str, Enum):
    """Condition of the wanted (or offered) item."""

    NEW = "new"
    USED = "used"
    ANY = "any"


class OfferStatus(str, Enum):
    """Lifecycle status of a seller's offer."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    FINALIZED = "finalized"


class DeliveryTerm(str, Enum):
    """How the seller hands the item over."""

    IN_PERSON = "in_person"
    MAIL = "mail"


class OfferActor(str, Enum):
    """Role of whoever is acting on an offer."""

    OWNER = "owner"  # buy request owner, i.e. the buyer
    SELLER = "seller"
    SYSTEM = "system"


class OfferAction(str, Enum):
    """Operations an actor can request on an offer."""

    CREATE = "create"
    ACCEPT = "accept"
    REJECT = "reject"
    FINALIZE = "finalize"
    COUNTEROFFER = "counteroffer"
    EDIT = "edit"
    DELETE = "delete"


class OfferEventType(str, Enum):
    """Audit event types for the offer_events table."""

    CREATED = "created"
    EDITED = "edited"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    FINALIZED = "finalized"
    COUNTEROFFERED = "counteroffered"
    CHAT_OPENED = "chat_opened"


class PriceHistoryType(str, Enum):
    """Why a price was recorded in an offer's price history."""

    REJECTED = "rejected"
    INITIAL = "initial"


class RejectionReason(str, Enum):
    """Fixed list of reasons a buyer can give when rejecting an offer."""

    PRICE_TOO_HIGH = "Price too high"
    DOES_NOT_MEET_SPECS = "Does not meet specifications"
    DELIVERY_TOO_LONG = "Delivery time too long"
    MISSING_INFORMATION = "Missing information/photos"
    POOR_CONDITION = "Product in poor condition"
    OTHER = "Other"
