"""Contact API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from connectkit.api.dependencies import CurrentPrincipal, get_contact_service, rate_limit
from connectkit.models.enums import ContactStatus
from connectkit.schemas.common import PaginatedResponse
from connectkit.schemas.contact import (
    BulkUpdateRequest,
    BulkUpdateResponse,
    ContactCreate,
    ContactResponse,
    ContactStats,
    ContactUpdate,
    DuplicateGroup,
    ImportRequest,
    ImportResponse,
    MergeRequest,
    TagsRequest,
)
from connectkit.services.contacts import ContactService

router = APIRouter(
    prefix="/api/v1/contacts",
    tags=["contacts"],
    dependencies=[Depends(rate_limit("general"))],
)

ContactServiceDep = Annotated[ContactService, Depends(get_contact_service)]
PageParam = Annotated[int, Query(ge=1)]
LimitParam = Annotated[int, Query(ge=1, le=100)]


def _page(result) -> PaginatedResponse[ContactResponse]:
    return PaginatedResponse.from_page(
        result, [ContactResponse.model_validate(contact) for contact in result.items]
    )


@router.get("", response_model=PaginatedResponse[ContactResponse])
async def list_contacts(
    principal: CurrentPrincipal,
    contact_service: ContactServiceDep,
    page: PageParam = 1,
    limit: LimitParam = 20,
    sort: str | None = None,
    order: Annotated[str, Query(pattern="^(asc|desc)$")] = "desc",
    search: str | None = None,
    status_filter: Annotated[ContactStatus | None, Query(alias="status")] = None,
    is_favorite: Annotated[bool | None, Query(alias="isFavorite")] = None,
    company: str | None = None,
    tags: Annotated[list[str] | None, Query()] = None,
    has_email: Annotated[bool | None, Query(alias="hasEmail")] = None,
    has_phone: Annotated[bool | None, Query(alias="hasPhone")] = None,
    city: str | None = None,
    state: str | None = None,
    country: str | None = None,
):
    """List the current user's contacts with filters and pagination."""
    filters = {
        "status": status_filter,
        "is_favorite": is_favorite,
        "company": company,
        "tags": tags,
        "has_email": has_email,
        "has_phone": has_phone,
        "city": city,
        "state": state,
        "country": country,
    }
    result = contact_service.list_contacts(principal.user_id, filters, search, page, limit, sort, order)
    return _page(result)


@router.post("", response_model=ContactResponse, status_code=status.HTTP_201_CREATED)
async def create_contact(body: ContactCreate, principal: CurrentPrincipal, contact_service: ContactServiceDep):
    """Create a contact."""
    return contact_service.create(principal.user_id, body)


@router.get("/search", response_model=PaginatedResponse[ContactResponse])
async def search_contacts(
    q: Annotated[str, Query(min_length=1)],
    principal: CurrentPrincipal,
    contact_service: ContactServiceDep,
    page: PageParam = 1,
    limit: LimitParam = 20,
):
    """Full-text style search across names, email, company and notes."""
    return _page(contact_service.search(principal.user_id, q, page, limit))


@router.get("/favorites", response_model=PaginatedResponse[ContactResponse])
async def favorite_contacts(
    principal: CurrentPrincipal,
    contact_service: ContactServiceDep,
    page: PageParam = 1,
    limit: LimitParam = 20,
):
    """List favorite contacts."""
    return _page(contact_service.favorites(principal.user_id, page, limit))


@router.get("/stats", response_model=ContactStats)
async def contact_stats(principal: CurrentPrincipal, contact_service: ContactServiceDep):
    """Get contact statistics."""
    return contact_service.stats(principal.user_id)


@router.get("/companies", response_model=list[str])
async def list_companies(principal: CurrentPrincipal, contact_service: ContactServiceDep):
    """List distinct companies."""
    return contact_service.companies(principal.user_id)


@router.get("/tags")
async def list_tags(principal: CurrentPrincipal, contact_service: ContactServiceDep) -> list[dict]:
    """List tags with usage counts."""
    return contact_service.tags(principal.user_id)


@router.get("/export")
async def export_contacts(
    principal: CurrentPrincipal,
    contact_service: ContactServiceDep,
    export_format: Annotated[str, Query(alias="format", pattern="^(json|csv)$")] = "json",
    fields: Annotated[str | None, Query(description="Comma-separated field names")] = None,
):
    """Download all contacts as JSON or CSV."""
    field_list = [field.strip() for field in fields.split(",") if field.strip()] if fields else None
    content = contact_service.export(principal.user_id, export_format, field_list)
    media_type = "text/csv" if export_format == "csv" else "application/json"
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="contacts.{export_format}"'},
    )


@router.get("/duplicates", response_model=list[DuplicateGroup])
async def find_duplicates(principal: CurrentPrincipal, contact_service: ContactServiceDep):
    """Find contacts sharing an email or phone number."""
    groups = contact_service.find_duplicates(principal.user_id)
    return [
        DuplicateGroup(
            field=group["field"],
            value=group["value"],
            contacts=[ContactResponse.model_validate(contact) for contact in group["contacts"]],
        )
        for group in groups
    ]


@router.patch("/bulk-update", response_model=BulkUpdateResponse)
async def bulk_update(body: BulkUpdateRequest, principal: CurrentPrincipal, contact_service: ContactServiceDep):
    """Apply the same update to several contacts."""
    updated = contact_service.bulk_update(principal.user_id, body.contact_ids, body.updates)
    return BulkUpdateResponse(updated=updated)


@router.post("/merge", response_model=ContactResponse)
async def merge_contacts(body: MergeRequest, principal: CurrentPrincipal, contact_service: ContactServiceDep):
    """Merge duplicate contacts into a primary contact."""
    return contact_service.merge(principal.user_id, body.primary_contact_id, body.duplicate_contact_ids)


@router.post("/import", response_model=ImportResponse)
async def import_contacts(body: ImportRequest, principal: CurrentPrincipal, contact_service: ContactServiceDep):
    """Create many contacts, reporting failures per row."""
    successful, failed = contact_service.import_contacts(principal.user_id, body.contacts)
    return ImportResponse(
        successful=[ContactResponse.model_validate(contact) for contact in successful],
        failed=failed,
    )


@router.get("/{contact_id}", response_model=ContactResponse)
async def get_contact(contact_id: UUID, principal: CurrentPrincipal, contact_service: ContactServiceDep):
    """Get a contact by ID."""
    return contact_service.get(contact_id, principal.user_id)


@router.put("/{contact_id}", response_model=ContactResponse)
async def update_contact(
    contact_id: UUID,
    body: ContactUpdate,
    principal: CurrentPrincipal,
    contact_service: ContactServiceDep,
):
    """Update a contact."""
    return contact_service.update(contact_id, principal.user_id, body)


@router.delete("/{contact_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_contact(contact_id: UUID, principal: CurrentPrincipal, contact_service: ContactServiceDep):
    """Soft delete a contact."""
    contact_service.delete(contact_id, principal.user_id)


@router.post("/{contact_id}/archive", response_model=ContactResponse)
async def archive_contact(contact_id: UUID, principal: CurrentPrincipal, contact_service: ContactServiceDep):
    """Archive a contact."""
    return contact_service.archive(contact_id, principal.user_id)


@router.post("/{contact_id}/restore", response_model=ContactResponse)
async def restore_contact(contact_id: UUID, principal: CurrentPrincipal, contact_service: ContactServiceDep):
    """Restore an archived or deleted contact."""
    return contact_service.restore(contact_id, principal.user_id)


@router.post("/{contact_id}/favorite", response_model=ContactResponse)
async def toggle_favorite(contact_id: UUID, principal: CurrentPrincipal, contact_service: ContactServiceDep):
    """Toggle the favorite flag."""
    return contact_service.toggle_favorite(contact_id, principal.user_id)


@router.post("/{contact_id}/tags", response_model=ContactResponse)
async def add_tags(
    contact_id: UUID,
    body: TagsRequest,
    principal: CurrentPrincipal,
    contact_service: ContactServiceDep,
):
    """Add tags to a contact."""
    return contact_service.add_tags(contact_id, principal.user_id, body.tags)


@router.delete("/{contact_id}/tags", response_model=ContactResponse)
async def remove_tags(
    contact_id: UUID,
    body: TagsRequest,
    principal: CurrentPrincipal,
    contact_service: ContactServiceDep,
):
    """Remove tags from a contact."""
    return contact_service.remove_tags(contact_id, principal.user_id, body.tags)
