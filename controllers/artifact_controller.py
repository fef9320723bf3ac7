from fastapi import Request
from fastapi.responses import FileResponse, JSONResponse, Response

from services.artifact_store import ArtifactStore, media_type_for


async def get_artifact(request: Request, name: str) -> Response:
    """Controller to serve a persisted screenshot by file name.

    Args:
        request: FastAPI Request (to access app.state.artifact_store).
        name: Client-supplied file name; only its base name is used, so
            nested or `..` segments can never escape the screenshots directory.

    Returns:
        A `FileResponse` with the image content type and a short public cache
        lifetime, or a 404 JSON body when the file does not exist.
    """
    store: ArtifactStore = request.app.state.artifact_store
    path = store.resolve(name)
    if path is None:
        return JSONResponse(status_code=404, content={"error": "Image not found"})

    return FileResponse(
        path,
        media_type=media_type_for(path),
        headers={"Cache-Control": "public, max-age=300"},
    )
