"""Provider (therapist) models."""

from typing import Optional

from pydantic import BaseModel


class Provider(BaseModel):
    """Therapist who performs appointments."""

    id: str
    name: str
    specialty: Optional[str] = None
    active: bool = True

    class Config:
        frozen = True


PROVIDERS = {
    "dirlene": Provider(id="dirlene", name="Dirlene", specialty="Massoterapeuta"),
}


def get_provider(provider_id: str) -> Optional[Provider]:
    """Get an active provider by id."""
    provider = PROVIDERS.get(provider_id)
    if provider is None or not provider.active:
        return None
    return provider


def get_all_providers() -> list[Provider]:
    return [p for p in PROVIDERS.values() if p.active]
