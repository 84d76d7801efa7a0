"""Static product catalog: credit packages, per-model cost, supported outputs."""

from pydantic import BaseModel


class CreditPackage(BaseModel):
    id: str
    name: str
    description: str
    price_in_cents: int
    credits: int


CREDIT_PACKAGES: tuple[CreditPackage, ...] = (
    CreditPackage(
        id="starter-pack",
        name="Starter Pack",
        description="Perfect for trying out the platform",
        price_in_cents=1099,
        credits=6,
    ),
    CreditPackage(
        id="creator-pack",
        name="Creator Pack",
        description="Best value for regular creators",
        price_in_cents=2199,
        credits=13,
    ),
    CreditPackage(
        id="pro-pack",
        name="Pro Pack",
        description="For professional content creators",
        price_in_cents=4599,
        credits=30,
    ),
    CreditPackage(
        id="enterprise-pack",
        name="Enterprise Pack",
        description="Maximum value for power users",
        price_in_cents=10999,
        credits=80,
    ),
)

# Flat per video, any supported duration
CREDIT_COSTS: dict[str, int] = {
    "sora-2": 1,
    "sora-2-pro": 3,
}

VIDEO_DURATIONS = (4, 8, 12)
DEFAULT_DURATION = 8

LANDSCAPE_SIZE = "1280x720"
PORTRAIT_SIZE = "720x1280"
VIDEO_SIZES = (LANDSCAPE_SIZE, PORTRAIT_SIZE)


def get_package(package_id: str | None) -> CreditPackage | None:
    if not package_id:
        return None
    return next((p for p in CREDIT_PACKAGES if p.id == package_id), None)


def find_package_by_price(price_in_cents: int | None) -> CreditPackage | None:
    if price_in_cents is None:
        return None
    return next((p for p in CREDIT_PACKAGES if p.price_in_cents == price_in_cents), None)


def credit_cost(model: str) -> int | None:
    """Credits charged for one video on ``model``; None for unknown models."""
    return CREDIT_COSTS.get(model)


def parse_size(size: str) -> tuple[int, int]:
    width, _, height = size.partition("x")
    return int(width), int(height)
