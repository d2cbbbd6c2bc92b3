import enum

class ArticleType(str, enum.Enum):
    meal = "MEAL"
    beverage = "BEVERAGE"
    consumable = "CONSUMABLE"
    semi_consumable = "SEMI_CONSUMABLE"
    equipment = "EQUIPMENT"

class OrderStatus(str, enum.Enum):
    draft = "DRAFT"
    sent = "SENT"
    confirmed = "CONFIRMED"
    cancelled = "CANCELLED"

class DeliveryStatus(str, enum.Enum):
    pending = "PENDING"
    received = "RECEIVED"
    validated = "VALIDATED"
    rejected = "REJECTED"

class DiscrepancyType(str, enum.Enum):
    quantity_higher = "QUANTITY_HIGHER"
    quantity_lower = "QUANTITY_LOWER"
    article_missing = "ARTICLE_MISSING"
    article_extra = "ARTICLE_EXTRA"
    price_different = "PRICE_DIFFERENT"
    quality_non_conforming = "QUALITY_NON_CONFORMING"

class DiscrepancyStatus(str, enum.Enum):
    pending = "PENDING"
    in_progress = "IN_PROGRESS"
    resolved = "RESOLVED"
    accepted = "ACCEPTED"
    rejected = "REJECTED"
