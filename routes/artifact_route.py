from fastapi import APIRouter, HTTPException, Request

from controllers.artifact_controller import get_artifact

router = APIRouter()


@router.get("/screenshots/{name:path}")
async def get_screenshot(request: Request, name: str):
	"""Return the stored screenshot bytes for the given file name."""
	try:
		return await get_artifact(request, name)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))
