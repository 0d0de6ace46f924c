"""Service models for the clinic's treatments."""

from typing import Optional

from pydantic import BaseModel, Field

from utils.constants import MAX_SERVICE_DURATION_MINUTES, MIN_SERVICE_DURATION_MINUTES


class Service(BaseModel):
    """Bookable treatment."""

    id: str
    name: str
    description: Optional[str] = None
    price_cents: int = Field(..., gt=0, description="Price in the smallest currency unit")
    duration_minutes: int = Field(
        ...,
        ge=MIN_SERVICE_DURATION_MINUTES,
        le=MAX_SERVICE_DURATION_MINUTES,
        description="Duration in minutes",
    )
    active: bool = True

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "id": "swedish",
                "name": "Massagem Sueca",
                "price_cents": 8500,
                "duration_minutes": 60,
            }
        }


# Predefined services
SERVICES = {
    "swedish": Service(
        id="swedish",
        name="Massagem Sueca",
        description="Massagem suave e relaxante com movimentos fluidos.",
        price_cents=8500,
        duration_minutes=60,
    ),
    "deep-tissue": Service(
        id="deep-tissue",
        name="Massagem Profunda (Deep Tissue)",
        description="Pressão firme nas camadas mais profundas dos músculos.",
        price_cents=11000,
        duration_minutes=75,
    ),
    "hot-stone": Service(
        id="hot-stone",
        name="Terapia com Pedras Quentes",
        description="Pedras aquecidas posicionadas em pontos-chave.",
        price_cents=13500,
        duration_minutes=90,
    ),
    "aromatherapy": Service(
        id="aromatherapy",
        name="Massagem com Aromaterapia",
        description="Óleos essenciais combinados com massagem suave.",
        price_cents=9500,
        duration_minutes=60,
    ),
}


def get_service(service_id: str) -> Optional[Service]:
    """Get an active service by id."""
    service = SERVICES.get(service_id)
    if service is None or not service.active:
        return None
    return service


def get_all_services() -> list[Service]:
    """Get all active services."""
    return [s for s in SERVICES.values() if s.active]
