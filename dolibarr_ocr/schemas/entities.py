"""
Pydantic schemas for the multicompany entity endpoints.

The backend keeps no selected entity: the browser stores the entity chosen
through POST /entities and sends it as entityId on later calls.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Entity(BaseModel):
    """A Dolibarr multicompany entity."""
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    id: str = Field(..., description="Entity id", examples=["1"])
    label: Optional[str] = Field(None, description="Entity name", examples=["Entidad Principal"])
    active: Optional[str] = Field(None, description="'1' when active")
    visible: Optional[str] = Field(None, description="'1' when visible")


class EntityListResponse(BaseModel):
    """Response model for GET /entities."""
    success: bool = True
    entities: List[Entity]


class SelectEntityRequest(BaseModel):
    """Request body for POST /entities."""
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    entity_id: str = Field(..., alias="entityId", min_length=1, description="Entity to select")


class SelectEntityResponse(BaseModel):
    """Response model for POST /entities."""
    success: bool = True
    entity: Entity
    message: str
