from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator


def _coerce_id(value: Any) -> Any:
    # upstream mixes integer and string ids
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


ResourceId = Annotated[str, BeforeValidator(_coerce_id)]


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CantonRef(WireModel):
    id: ResourceId
    name: str = Field("", alias="nombre")
    province: str | None = Field(None, alias="provincia")


class PersonaRef(WireModel):
    id: ResourceId
    name: str | None = Field(None, alias="nombre")
    first_names: str | None = Field(None, alias="nombres")
    last_names: str | None = Field(None, alias="apellidos")
    cedula: str | None = None
    canton_id: ResourceId | None = Field(None, alias="cantonId")
    canton: CantonRef | None = None

    @model_validator(mode="before")
    @classmethod
    def _canton_as_string(cls, data: Any) -> Any:
        # some listings send the canton as a bare id instead of an object
        if isinstance(data, dict) and isinstance(data.get("canton"), (str, int)):
            data = dict(data)
            data.setdefault("cantonId", data["canton"])
            data["canton"] = None
        return data

    @property
    def full_name(self) -> str:
        if self.first_names and self.last_names:
            return f"{self.first_names} {self.last_names}"
        if self.name:
            return self.name
        return f"Persona {self.cedula}" if self.cedula else "Sin nombre"

    @property
    def home_canton_id(self) -> str | None:
        if self.canton_id is not None:
            return self.canton_id
        return self.canton.id if self.canton else None


class UserRef(WireModel):
    id: ResourceId
    name: str = Field("", alias="nombre")
    email: str | None = None
    role: str | None = Field(None, alias="rol")
    photo_url: str | None = Field(None, alias="photoUrl")
    cantons: list[CantonRef] = Field(default_factory=list, alias="cantones")


class CantonCapabilities(WireModel):
    view: bool = False
    edit: bool = False
    delete: bool = False
    create_expedientes: bool = Field(False, alias="createExpedientes")

    def merge(self, other: CantonCapabilities) -> CantonCapabilities:
        return CantonCapabilities(
            view=self.view or other.view,
            edit=self.edit or other.edit,
            delete=self.delete or other.delete,
            create_expedientes=self.create_expedientes or other.create_expedientes,
        )

    def to_wire(self) -> dict[str, bool]:
        return self.model_dump(by_alias=True)


class PersonaCapabilities(WireModel):
    can_view: bool = Field(False, alias="canView")
    can_create: bool = Field(False, alias="canCreate")
    can_edit: bool = Field(False, alias="canEdit")

    @property
    def can_manage(self) -> bool:
        return self.can_create or self.can_edit

    @classmethod
    def from_flags(cls, *, view_specific: bool, manage_all: bool) -> PersonaCapabilities:
        return cls(can_view=view_specific, can_create=manage_all, can_edit=manage_all)

    def to_wire(self) -> dict[str, bool]:
        return self.model_dump(by_alias=True)


class SingleCantonScope(BaseModel):
    kind: Literal["single"] = "single"
    canton: CantonRef | None = None

    def cantons(self) -> list[CantonRef]:
        return [self.canton] if self.canton is not None else []


class MultiCantonScope(BaseModel):
    kind: Literal["multi"] = "multi"
    items: list[CantonRef] = Field(default_factory=list)

    def cantons(self) -> list[CantonRef]:
        return list(self.items)


CantonScope = Annotated[Union[SingleCantonScope, MultiCantonScope], Field(discriminator="kind")]


def _resolve_scope(data: dict[str, Any]) -> dict[str, Any]:
    """Fold the ``canton``/``cantones`` row shapes into one tagged ``scope``."""

    if "scope" in data:
        return data
    data = dict(data)
    multi = data.pop("cantones", None)
    single = data.pop("canton", None)
    if isinstance(multi, list):
        data["scope"] = {"kind": "multi", "items": [c for c in multi if c]}
    else:
        data["scope"] = {"kind": "single", "canton": single or None}
    return data


def _resolve_user_id(data: dict[str, Any]) -> dict[str, Any]:
    if data.get("userId") is None and isinstance(data.get("user"), dict):
        data = dict(data)
        data["userId"] = data["user"].get("id")
    return data


class CantonGrant(WireModel):
    id: ResourceId
    user_id: ResourceId = Field(alias="userId")
    canton_id: ResourceId | None = Field(None, alias="cantonId")
    user: UserRef | None = None
    scope: CantonScope
    capabilities: CantonCapabilities = Field(default_factory=CantonCapabilities, alias="permissions")

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = _resolve_scope(_resolve_user_id(data))
        scope = data["scope"]
        if data.get("cantonId") is None and isinstance(scope, dict) and scope.get("canton"):
            data["cantonId"] = scope["canton"].get("id")
        return data

    def canton_ids(self) -> set[str]:
        ids = {canton.id for canton in self.scope.cantons()}
        if self.canton_id is not None:
            ids.add(self.canton_id)
        return ids


class PersonaGrant(WireModel):
    id: ResourceId
    user_id: ResourceId = Field(alias="userId")
    persona_id: ResourceId | None = Field(None, alias="personaId")
    canton_id: ResourceId | None = Field(None, alias="cantonId")
    user: UserRef | None = None
    persona: PersonaRef | None = None
    scope: CantonScope
    can_view: bool = Field(False, alias="canView")
    can_create: bool = Field(False, alias="canCreate")
    can_edit: bool = Field(False, alias="canEdit")
    updated_at: datetime | None = Field(None, alias="updatedAt")

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = _resolve_scope(_resolve_user_id(data))
        manage = data.pop("canManage", None)
        if manage is not None:
            data.setdefault("canCreate", manage)
            data.setdefault("canEdit", manage)
        if data.get("personaId") is None and isinstance(data.get("persona"), dict):
            data["personaId"] = data["persona"].get("id")
        return data

    @property
    def can_manage(self) -> bool:
        return self.can_create or self.can_edit

    @property
    def capabilities(self) -> PersonaCapabilities:
        return PersonaCapabilities(
            can_view=self.can_view, can_create=self.can_create, can_edit=self.can_edit
        )

    def cantons(self) -> list[CantonRef]:
        cantons: list[CantonRef] = []
        if self.persona is not None and self.persona.canton is not None:
            cantons.append(self.persona.canton)
        cantons.extend(self.scope.cantons())
        return cantons

    def canton_ids(self) -> set[str]:
        """Cantons this grant belongs to, by persona reference or by row scope."""

        ids = {canton.id for canton in self.cantons()}
        if self.persona is not None and self.persona.home_canton_id is not None:
            ids.add(self.persona.home_canton_id)
        if self.canton_id is not None:
            ids.add(self.canton_id)
        return ids


class CantonPermissionCard(BaseModel):
    user_id: str
    user: UserRef | None = None
    grant_ids: list[str] = Field(default_factory=list)
    cantons: list[CantonRef] = Field(default_factory=list)
    capabilities: CantonCapabilities = Field(default_factory=CantonCapabilities)

    @property
    def canton_ids(self) -> list[str]:
        return [canton.id for canton in self.cantons]


class PersonaPermissionCard(BaseModel):
    user_id: str
    user: UserRef | None = None
    grant_ids: list[str] = Field(default_factory=list)
    personas: list[PersonaRef] = Field(default_factory=list)
    cantons: list[CantonRef] = Field(default_factory=list)
    can_view: bool = False
    can_manage: bool = False
    updated_at: datetime | None = None

    @property
    def persona_ids(self) -> list[str]:
        return [persona.id for persona in self.personas]
