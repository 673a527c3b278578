"""Single-page application shell.

Serves files from the static directory and falls back to index.html for any
other GET path so client-side routing works. Registered last so every API
route wins.
"""

from pathlib import Path

from fastapi import APIRouter, HTTPException
from fastapi.responses import FileResponse


def build_spa_router(static_dir: str) -> APIRouter:
    router = APIRouter(tags=["spa"])
    root = Path(static_dir).resolve()

    @router.get("/{full_path:path}", include_in_schema=False)
    async def spa_shell(full_path: str):
        if full_path:
            candidate = (root / full_path).resolve()
            # Never serve anything outside the static root
            if candidate.is_relative_to(root) and candidate.is_file():
                return FileResponse(candidate)

        index = root / "index.html"
        if not index.is_file():
            raise HTTPException(status_code=404, detail="Not found")
        return FileResponse(index)

    return router
