from fastapi import APIRouter, Depends

from ..security import CallerClaims, get_caller, get_store
from ..store import PermissionStore

router = APIRouter()


@router.get("/collaborators")
async def list_collaborators(
    store: PermissionStore = Depends(get_store),
    caller: CallerClaims = Depends(get_caller),
) -> list[dict]:
    return [user.model_dump(mode="json") for user in await store.list_collaborators()]


@router.get("/cantones")
async def list_cantons(
    store: PermissionStore = Depends(get_store),
    caller: CallerClaims = Depends(get_caller),
) -> list[dict]:
    return [canton.model_dump(mode="json") for canton in await store.list_cantons()]
