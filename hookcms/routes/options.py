from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy import select

from hookcms.auth import require_capabilities
from hookcms.exceptions import DuplicateResourceError, ResourceNotFoundError
from hookcms.hooks import Hooks
from hookcms.models.option import Option
from hookcms.schemas.content import OptionUpdate
from hookcms.services.options_service import OptionsService
from hookcms.utils.json_utils import parse_value

router = APIRouter(tags=["Options"])


class OptionCreate(OptionUpdate):
    name: str = Field(..., min_length=1, max_length=191)


class OptionOut(BaseModel):
    id: int
    name: str
    value: object = None
    autoload: bool


def _serialize(option: Option) -> OptionOut:
    return OptionOut(id=option.id, name=option.name, value=parse_value(option.value), autoload=option.autoload)


async def _require(db, name: str) -> Option:
    option = (await db.execute(select(Option).where(Option.name == name))).scalar_one_or_none()
    if option is not None:
        return option
    raise ResourceNotFoundError("Option", name)


@router.get("/", response_model=list[OptionOut])
async def list_options(
    prefix: str | None = None,
    hooks: Hooks = Depends(require_capabilities(can_one_of=["read", "read_option"])),
):
    return [_serialize(option) for option in await OptionsService.list_options(hooks.db, prefix)]


@router.get("/{name}", response_model=OptionOut)
async def get_option(name: str, hooks: Hooks = Depends(require_capabilities(can_one_of=["read", "read_option"]))):
    return _serialize(await _require(hooks.db, name))


@router.post("/", response_model=OptionOut, status_code=status.HTTP_201_CREATED)
async def create_option(
    body: OptionCreate,
    hooks: Hooks = Depends(require_capabilities(can_one_of=["create", "create_options"])),
):
    if await OptionsService.get_raw_option(hooks.db, body.name) is not None:
        raise DuplicateResourceError("Option", "name", body.name)
    option = await OptionsService.set_option(hooks.db, body.name, body.value, autoload=body.autoload)
    await hooks.do_action("optionUpdated", body.name, body.value)
    return _serialize(option)


@router.patch("/{name}", response_model=OptionOut)
async def update_option(
    name: str,
    body: OptionUpdate,
    hooks: Hooks = Depends(require_capabilities(can_one_of=["update", "edit_options"])),
):
    await _require(hooks.db, name)
    option = await OptionsService.set_option(hooks.db, name, body.value, commit=False)
    option.autoload = body.autoload
    await hooks.db.commit()
    await hooks.do_action("optionUpdated", name, body.value)
    return _serialize(option)


@router.delete("/{name}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_option(
    name: str,
    hooks: Hooks = Depends(require_capabilities(can_one_of=["delete", "delete_options"])),
):
    if not await OptionsService.delete_option(hooks.db, name):
        raise ResourceNotFoundError("Option", name)
