"""
Integration routes - mapping configuration and ingestion audit.
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from typing import Optional
from uuid import UUID
import logging

from app.ingestion_engine.core.mapping import MappingConfiguration
from app.ingestion_engine.core.types import IngestionOutcome, LeadSource
from app.ingestion_engine.errors import InvalidMappingConfiguration, StorageError
from app.schemas.ingestion import AuditRecordList, IngestionAuditRecordResponse
from app.schemas.mapping import MappingConfigurationRequest, MappingConfigurationResponse
from app.services.ingestion_service import IngestionService, get_ingestion_service


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/integrations", tags=["Integrations"])


def _storage_unavailable(e: StorageError) -> HTTPException:
    logger.error(f"Storage error: {e}")
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Storage unavailable")


@router.put("/{tenant_id}/{source}/mapping", response_model=MappingConfigurationResponse)
async def save_mapping_configuration(
    tenant_id: UUID,
    source: LeadSource,
    request: MappingConfigurationRequest,
    service: IngestionService = Depends(get_ingestion_service),
):
    """
    Save a tenant's mapping configuration for a source.
    Ambiguous rule sets (two rules targeting one field) are rejected with 422.
    """
    try:
        configuration = MappingConfiguration.build(
            tenant_id=str(tenant_id),
            source=source,
            rules=[rule.to_rule() for rule in request.rules],
            dedup_strategy=request.dedup_strategy,
            is_connected=request.is_connected,
        )
    except InvalidMappingConfiguration as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": e.message, "errors": e.errors},
        )

    try:
        await service.mapping_store.save_configuration(configuration)
    except StorageError as e:
        raise _storage_unavailable(e)

    logger.info(
        f"Saved {source.value} mapping for tenant {tenant_id}: "
        f"{len(configuration.rules)} rule(s), dedup={configuration.dedup_strategy.value}"
    )
    return MappingConfigurationResponse.from_configuration(configuration)


@router.get("/{tenant_id}/{source}/mapping", response_model=MappingConfigurationResponse)
async def get_mapping_configuration(
    tenant_id: UUID,
    source: LeadSource,
    service: IngestionService = Depends(get_ingestion_service),
):
    try:
        configuration = await service.mapping_store.get_configuration(str(tenant_id), source)
    except InvalidMappingConfiguration as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": e.message, "errors": e.errors},
        )
    except StorageError as e:
        raise _storage_unavailable(e)

    if configuration is None:
        raise HTTPException(status_code=404, detail="Mapping configuration not found")
    return MappingConfigurationResponse.from_configuration(configuration)


@router.get("/{tenant_id}/audit", response_model=AuditRecordList)
async def list_audit_records(
    tenant_id: UUID,
    source: Optional[LeadSource] = None,
    outcome: Optional[IngestionOutcome] = None,
    limit: int = Query(100, ge=1, le=1000),
    service: IngestionService = Depends(get_ingestion_service),
):
    """Ingestion attempts for a tenant, newest first."""
    try:
        records = await service.audit_sink.list_records(
            str(tenant_id),
            source=source,
            outcome=outcome.value if outcome else None,
            limit=limit,
        )
    except StorageError as e:
        raise _storage_unavailable(e)

    return AuditRecordList(
        records=[IngestionAuditRecordResponse.model_validate(record) for record in records],
        total=len(records),
    )
