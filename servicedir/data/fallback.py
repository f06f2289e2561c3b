"""
Static fallback dataset, served when the repository cannot be reached.

Answers the same fetch_by_id / fetch_by_filter shape as a repository so that
callers do not need to know which source replied.
"""
from typing import Any, Dict, List, Optional

from servicedir.errors import NotFoundError

from .models import ServiceEntity, ServiceFilter


def _weekly_hours(open_: str, close: str, saturday: Optional[str] = None,
                  sunday: Optional[tuple] = None) -> Dict[str, Dict[str, Any]]:
    days = ["monday", "tuesday", "wednesday", "thursday", "friday"]
    hours = {d: {"open": open_, "close": close, "closed": False} for d in days}
    hours["saturday"] = {"open": open_, "close": saturday or close, "closed": False}
    if sunday is None:
        hours["sunday"] = {"open": "00:00", "close": "00:00", "closed": True}
    else:
        hours["sunday"] = {"open": sunday[0], "close": sunday[1], "closed": False}
    return hours


FALLBACK_RECORDS: List[Dict[str, Any]] = [
    {
        "id": "agente-bcp",
        "name": "Agente BCP",
        "description": "Servicios bancarios y financieros disponibles en tu zona.",
        "category": "Agentes bancarios",
        "barrio": "San Isidro",
        "address": "Av. Javier Prado Este 123",
        "phone": "+51 1 234-5678",
        "whatsapp": "+51 987 654 321",
        "email": "contacto@agentebcp.com",
        "website": "https://www.bcp.com.pe",
        "images": ["https://images.pexels.com/photos/7706434/pexels-photo-7706434.jpeg"],
        "rating": 4.5,
        "reviewCount": 25,
        "active": True,
        "featured": True,
        "userId": "user1",
        "createdAt": "2024-01-15T00:00:00Z",
        "hours": _weekly_hours("09:00", "18:00", saturday="14:00"),
    },
    {
        "id": "bobocha-bubble-tea",
        "name": "Bobocha Bubble Tea Shop",
        "description": "Deliciosos bubble teas y bebidas refrescantes.",
        "category": "Cafeteria",
        "barrio": "Miraflores",
        "address": "Av. Larco 456",
        "phone": "+51 1 345-6789",
        "whatsapp": "+51 987 123 456",
        "email": "info@bobocha.pe",
        "images": ["https://images.pexels.com/photos/302899/pexels-photo-302899.jpeg"],
        "rating": 4.8,
        "reviewCount": 42,
        "active": True,
        "featured": True,
        "userId": "user2",
        "createdAt": "2024-01-10T00:00:00Z",
        "hours": _weekly_hours("10:00", "22:00", saturday="23:00", sunday=("12:00", "21:00")),
    },
    {
        "id": "carniceria-el-buen-corte",
        "name": "Carnicería El Buen Corte",
        "description": "Carnes frescas y de la mejor calidad.",
        "category": "Carnicería",
        "barrio": "San Borja",
        "address": "Av. San Borja Norte 789",
        "phone": "+51 1 456-7890",
        "whatsapp": "+51 987 456 789",
        "images": ["https://images.pexels.com/photos/1775043/pexels-photo-1775043.jpeg"],
        "rating": 4.3,
        "reviewCount": 18,
        "active": True,
        "featured": False,
        "userId": "user3",
        "createdAt": "2024-01-08T00:00:00Z",
        "hours": _weekly_hours("07:00", "19:00", saturday="17:00"),
    },
    {
        "id": "panaderia-san-martin",
        "name": "Panadería San Martín",
        "description": "Pan fresco todos los días y productos de panadería.",
        "category": "Panadería",
        "barrio": "Surco",
        "address": "Av. Primavera 321",
        "phone": "+51 1 567-8901",
        "whatsapp": "+51 987 567 890",
        "images": ["https://images.pexels.com/photos/1775043/pexels-photo-1775043.jpeg"],
        "rating": 4.6,
        "reviewCount": 35,
        "active": True,
        "featured": True,
        "userId": "user4",
        "createdAt": "2024-01-05T00:00:00Z",
        "hours": _weekly_hours("06:00", "20:00", sunday=("07:00", "18:00")),
    },
    {
        "id": "restaurante-el-sabor",
        "name": "Restaurante El Sabor",
        "description": "Comida criolla y platos tradicionales peruanos.",
        "category": "Restaurantes",
        "barrio": "Barranco",
        "address": "Jr. Unión 654",
        "phone": "+51 1 678-9012",
        "whatsapp": "+51 987 678 901",
        "email": "reservas@elsabor.pe",
        "images": ["https://images.pexels.com/photos/958545/pexels-photo-958545.jpeg"],
        "rating": 4.7,
        "reviewCount": 67,
        "active": True,
        "featured": True,
        "userId": "user5",
        "createdAt": "2024-01-03T00:00:00Z",
        "hours": _weekly_hours("12:00", "22:00", saturday="23:00", sunday=("12:00", "21:00")),
    },
    {
        "id": "farmacia-salud",
        "name": "Farmacia Salud",
        "description": "Medicamentos y productos farmacéuticos.",
        "category": "Farmacia",
        "barrio": "La Molina",
        "address": "Av. La Molina 987",
        "phone": "+51 1 789-0123",
        "whatsapp": "+51 987 789 012",
        "images": ["https://images.pexels.com/photos/356056/pexels-photo-356056.jpeg"],
        "rating": 4.4,
        "reviewCount": 28,
        "active": True,
        "featured": False,
        "userId": "user6",
        "createdAt": "2024-01-01T00:00:00Z",
        "hours": _weekly_hours("08:00", "22:00", sunday=("09:00", "21:00")),
    },
]


class FallbackDataset:
    """In-memory services with the repository's read interface."""

    def __init__(self, records: Optional[List[Dict[str, Any]]] = None):
        source = FALLBACK_RECORDS if records is None else records
        self._services = [ServiceEntity.from_record(r) for r in source]

    def __len__(self) -> int:
        return len(self._services)

    def fetch_by_id(self, service_id: str) -> ServiceEntity:
        for service in self._services:
            if service.id == service_id or service.slug == service_id:
                return service
        raise NotFoundError(service_id)

    def fetch_by_filter(
        self,
        service_filter: ServiceFilter,
        page_size: int,
        offset: int = 0,
    ) -> List[ServiceEntity]:
        filtered = [s for s in self._services if service_filter.matches(s)]
        if service_filter.featured:
            filtered.sort(key=lambda s: s.rating, reverse=True)
        end = offset + page_size if page_size else len(filtered)
        return filtered[offset:end]
