"""Typed definitions for actions, auth schemes and conditions.

Jobs and workflow steps persist these as JSON. They are parsed back into
discriminated unions right before execution, so a malformed stored
definition surfaces as a ValidationError instead of a KeyError deep inside
an action.
"""

import json
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from core.constants import HttpMethod
from core.exceptions import ValidationError


def _stringify(value: Any) -> Any:
    """Store structured bodies as JSON text so they can carry placeholders."""
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


# ─── Auth ──────────────────────────────────────────────────


class NoAuth(BaseModel):
    type: Literal["none"] = "none"


class BasicAuth(BaseModel):
    type: Literal["basic"] = "basic"
    username: str
    password: str


class BearerAuth(BaseModel):
    type: Literal["bearer"] = "bearer"
    token: str


class ApiKeyAuth(BaseModel):
    type: Literal["api_key"] = "api_key"
    key: str
    value: str
    add_to: Literal["header", "query"] = Field(default="header", alias="addTo")

    class Config:
        populate_by_name = True


class OAuth2ClientCredentialsAuth(BaseModel):
    """Client-credentials grant; the token is fetched on every call."""

    type: Literal["oauth2_client_credentials"] = "oauth2_client_credentials"
    client_id: str = Field(alias="clientId")
    client_secret: str = Field(alias="clientSecret")
    token_url: str = Field(alias="tokenUrl")
    scope: Optional[str] = None

    class Config:
        populate_by_name = True


AuthConfig = Annotated[
    Union[NoAuth, BasicAuth, BearerAuth, ApiKeyAuth, OAuth2ClientCredentialsAuth],
    Field(discriminator="type"),
]


# ─── Actions ───────────────────────────────────────────────


class HttpRequestAction(BaseModel):
    type: Literal["http_request"] = "http_request"
    url: str
    method: HttpMethod = HttpMethod.GET
    headers: dict[str, str] = Field(default_factory=dict)
    body: Optional[str] = None
    auth: Optional[AuthConfig] = None

    @field_validator("body", mode="before")
    @classmethod
    def _body_as_text(cls, v):
        return _stringify(v)

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, v):
        return v.upper() if isinstance(v, str) else v


class WebhookAction(BaseModel):
    type: Literal["webhook"] = "webhook"
    url: str
    payload: Optional[str] = None

    @field_validator("payload", mode="before")
    @classmethod
    def _payload_as_text(cls, v):
        return _stringify(v)


class ScriptAction(BaseModel):
    """Python snippet run as the body of ``def script(console, context)``."""

    type: Literal["script"] = "script"
    code: str
    language: Literal["python"] = "python"


ActionConfig = Annotated[
    Union[HttpRequestAction, WebhookAction, ScriptAction],
    Field(discriminator="type"),
]


# ─── Conditions ────────────────────────────────────────────


class Condition(BaseModel):
    """A single comparison against a context path.

    ``operator`` stays a plain string: unknown operators are legal and
    evaluate to true.
    """

    field: str
    operator: str
    value: Any = None

    @property
    def has_value(self) -> bool:
        """False when ``value`` was omitted, as opposed to given as null."""
        return "value" in self.model_fields_set


class StepDefinition(BaseModel):
    """Authoring form of a workflow step."""

    step_order: int = Field(alias="stepOrder")
    name: str
    step_type: Literal["action", "condition"] = Field(default="action", alias="stepType")
    action: Optional[ActionConfig] = None
    condition: Optional[Condition] = None
    output_variable: Optional[str] = Field(default=None, alias="outputVariable")
    on_true_step: Optional[int] = Field(default=None, alias="onTrueStep")
    on_false_step: Optional[int] = Field(default=None, alias="onFalseStep")

    class Config:
        populate_by_name = True

    def to_columns(self) -> dict:
        """Column values for a WorkflowStep row."""
        return {
            "step_order": self.step_order,
            "name": self.name,
            "step_type": self.step_type,
            "action": self.action.model_dump(mode="json", exclude_none=True) if self.action else None,
            "condition": self.condition.model_dump(mode="json", exclude_unset=True) if self.condition else None,
            "output_variable": self.output_variable,
            "on_true_step": self.on_true_step,
            "on_false_step": self.on_false_step,
        }


_action_adapter = TypeAdapter(ActionConfig)


def parse_action(data: Any) -> Union[HttpRequestAction, WebhookAction, ScriptAction]:
    """Parse a stored action dict into its typed form.

    Raises:
        ValidationError: If the dict does not describe a known action.
    """
    if isinstance(data, BaseModel):
        return data
    try:
        return _action_adapter.validate_python(data)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid action configuration: {exc.errors()[0]['msg']}") from exc


def parse_condition(data: Any) -> Optional[Condition]:
    """Parse a stored condition dict, ``None`` stays ``None``."""
    if data is None or isinstance(data, Condition):
        return data
    try:
        return Condition.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid condition: {exc.errors()[0]['msg']}") from exc


def dump_action(action: Any) -> dict:
    """Serialize an action (typed or dict) into its JSON column form."""
    return parse_action(action).model_dump(mode="json", exclude_none=True)


def parse_steps(steps: list[Any]) -> list[StepDefinition]:
    """Validate authoring step definitions; step orders must be unique."""
    try:
        parsed = [
            s if isinstance(s, StepDefinition) else StepDefinition.model_validate(s)
            for s in steps or []
        ]
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid workflow step: {exc.errors()[0]['msg']}") from exc
    orders = [s.step_order for s in parsed]
    if len(orders) != len(set(orders)):
        raise ValidationError("Workflow step orders must be unique")
    return parsed
