"""Action models for ActionSet nodes.

Actions run in order when a run enters an ActionSet:
  - SendMessageAction (``reply``): render a localized message template
  - SaveToFieldAction (``save``): write a value into the run's fields
  - StartFlowAction (``flow``): start an independent run of another flow
  - SetLanguageAction (``lang``): switch the run's active language

The discriminated ``Action`` union uses the ``type`` field as its
discriminator so Pydantic can deserialise synced JSON directly into the
correct type.
"""

from typing import Annotated, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field


class SendMessageAction(BaseModel):
    """Show a message to the surveyor.  ``msg`` maps language → template."""

    type: Literal["reply"] = "reply"
    msg: Dict[str, str]


class SaveToFieldAction(BaseModel):
    """Save a templated value into a run field.

    A value consisting of a single ``{expr}`` span keeps the typed result of
    the expression; anything else is rendered to text.
    """

    type: Literal["save"] = "save"
    field: str
    value: str
    label: Optional[str] = None


class FlowRef(BaseModel):
    """Reference to another flow by UUID."""

    uuid: str
    name: Optional[str] = None


class StartFlowAction(BaseModel):
    """Start a separate run of another flow without suspending this one."""

    type: Literal["flow"] = "flow"
    flow: FlowRef


class SetLanguageAction(BaseModel):
    """Switch the language used for messages and category names."""

    type: Literal["lang"] = "lang"
    lang: str
    name: Optional[str] = None


# Discriminated union — Pydantic picks the right type based on the "type" field.
Action = Annotated[
    Union[SendMessageAction, SaveToFieldAction, StartFlowAction, SetLanguageAction],
    Field(discriminator="type"),
]
