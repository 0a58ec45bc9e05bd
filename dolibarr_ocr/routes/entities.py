"""
Multicompany entity endpoints.

- GET /entities: list active, visible entities (a single default entity when
  the multicompany module is not installed)
- POST /entities: check that an entity exists before the browser selects it

The backend keeps no selection; later calls carry entityId.
"""

import logging

from fastapi import APIRouter, Depends, status

from dolibarr_ocr.errors import NotFoundError
from dolibarr_ocr.routes.dependencies import get_dolibarr_client
from dolibarr_ocr.schemas.entities import (
    Entity,
    EntityListResponse,
    SelectEntityRequest,
    SelectEntityResponse,
)
from dolibarr_ocr.services.dolibarr_client import DolibarrClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/entities", tags=["entities"])


@router.get(
    "",
    response_model=EntityListResponse,
    status_code=status.HTTP_200_OK,
    summary="List multicompany entities",
)
async def list_entities(
    client: DolibarrClient = Depends(get_dolibarr_client),
) -> EntityListResponse:
    entities = await client.get_entities()
    logger.info(f"Returning {len(entities)} entities")
    return EntityListResponse(
        success=True,
        entities=[Entity.model_validate(entity) for entity in entities],
    )


@router.post(
    "",
    response_model=SelectEntityResponse,
    status_code=status.HTTP_200_OK,
    summary="Select a multicompany entity",
)
async def select_entity(
    request: SelectEntityRequest,
    client: DolibarrClient = Depends(get_dolibarr_client),
) -> SelectEntityResponse:
    """
    Validate the entity the user selected.

    Errors:
    - 404: the entity does not exist
    """
    client.set_current_entity(request.entity_id)
    entity = await client.get_entity_by_id(request.entity_id)

    if not entity:
        logger.warning(f"Entity not found: {request.entity_id}")
        raise NotFoundError("Entidad no encontrada")

    validated = Entity.model_validate(entity)
    logger.info(f"Entity selected: {validated.id} ('{validated.label}')")
    return SelectEntityResponse(
        success=True,
        entity=validated,
        message=f'Entidad "{validated.label}" configurada correctamente',
    )
