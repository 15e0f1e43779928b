"""Workspace file lookup routes."""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool

from parley.api.schemas import FileContentResponse, FileInfoSchema, FileSuggestionsResponse
from parley.api.services import Services, get_services

router = APIRouter(prefix="/files", tags=["files"])


@router.get("/suggestions", response_model=FileSuggestionsResponse)
async def file_suggestions(partial: str = "", services: Services = Depends(get_services)):
    """Up to 10 workspace files whose name contains ``partial``."""
    suggestions = await run_in_threadpool(services.resolver.list_candidates, partial)
    return FileSuggestionsResponse(suggestions=suggestions)


@router.get("/content", response_model=FileContentResponse)
async def file_content(path: str, services: Services = Depends(get_services)):
    record = await run_in_threadpool(services.resolver.resolve, path)
    if record is None:
        raise HTTPException(status_code=404, detail=f"File not found or unreadable: {path}")

    return FileContentResponse(
        file_path=path,
        content=record.content,
        file_info=FileInfoSchema(**record.info.to_dict()),
    )
