"""Shared API dependencies."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from dualstore.core.container import Container, RelationalComponents


def get_container(request: Request) -> Container:
    """Return the components wired at application startup."""
    return request.app.state.container


def get_relational(
    container: Annotated[Container, Depends(get_container)],
) -> RelationalComponents:
    """Relational-side components; 503 when no relational store is configured."""
    if container.relational is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Relational store is not configured",
        )
    return container.relational


ContainerDep = Annotated[Container, Depends(get_container)]
RelationalDep = Annotated[RelationalComponents, Depends(get_relational)]
