"""Bridge step programs

Automation logic sent to iTerm2 is a list of tagged steps, never generated
Python source. A program is serialized to JSON and embedded in the harness
script as a single string literal; caller data (commands, paths, profile
names) therefore only ever appears inside that literal.

Steps operate on named references: steps that locate or create a session
bind it (together with its tab and window) under ``bind``; later steps refer
to it through ``ref``.
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from .. import config

SessionAttr = Literal["session_id", "tab_id", "window_id"]


class GetApp(BaseModel):
    """Acquire the iTerm2 application handle"""

    kind: Literal["get_app"] = "get_app"


class CreateWindow(BaseModel):
    """Open a new window and bind its current session"""

    kind: Literal["create_window"] = "create_window"
    bind: str
    profile: str | None = None


class FindSession(BaseModel):
    """Linear scan of windows/tabs/sessions for a session id"""

    kind: Literal["find_session"] = "find_session"
    session_id: str
    bind: str


class SendText(BaseModel):
    """Send text to a bound session, or to a session id when collecting

    With ``collect`` set, failures are recorded as ``{session_id, success,
    error}`` entries under that result key instead of aborting the program.
    """

    kind: Literal["send_text"] = "send_text"
    text: str
    ref: str | None = None
    session_id: str | None = None
    collect: str | None = None


class Split(BaseModel):
    """Split a bound session and bind the new one"""

    kind: Literal["split"] = "split"
    ref: str
    vertical: bool
    bind: str
    profile: str | None = None


class GetVariables(BaseModel):
    """Read session variables into ``result[into]``"""

    kind: Literal["get_variables"] = "get_variables"
    ref: str
    names: list[str]
    into: str
    lenient: bool = False


class GridSize(BaseModel):
    """Read the session grid size into ``result[into]``"""

    kind: Literal["grid_size"] = "grid_size"
    ref: str
    into: str


class SetTabColor(BaseModel):
    """Set the tab color of a bound session; channels in [0.0, 1.0]"""

    kind: Literal["set_tab_color"] = "set_tab_color"
    ref: str
    rgb: tuple[float, float, float]
    label: str
    variable: str = Field(default_factory=lambda: config.TAB_COLOR_VAR)


class Monitor(BaseModel):
    """Poll variables and record changes into ``result[into]``"""

    kind: Literal["monitor"] = "monitor"
    ref: str
    fields: dict[str, str]
    duration: float
    interval: float
    into: str


class ListSessions(BaseModel):
    """Full window/tab/session listing into ``result[into]``"""

    kind: Literal["list_sessions"] = "list_sessions"
    into: str


class ListSessionIds(BaseModel):
    """All live session ids into ``result[into]``"""

    kind: Literal["list_session_ids"] = "list_session_ids"
    into: str


class Export(BaseModel):
    """Copy an attribute of a bound reference into ``result[key]``"""

    kind: Literal["export"] = "export"
    ref: str
    attr: SessionAttr
    key: str


Step = Annotated[
    Union[
        GetApp,
        CreateWindow,
        FindSession,
        SendText,
        Split,
        GetVariables,
        GridSize,
        SetTabColor,
        Monitor,
        ListSessions,
        ListSessionIds,
        Export,
    ],
    Field(discriminator="kind"),
]


class StepProgram(BaseModel):
    """A step list plus the budget the harness enforces on it"""

    steps: list[Step] = Field(default_factory=list)
    timeout: float = Field(default_factory=lambda: config.BRIDGE_STEP_TIMEOUT_SECONDS)

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)


class StepBuilder:
    """Fluent builder for StepProgram

    Every program starts with GetApp.

    Example:
        program = (
            StepBuilder()
            .find_session(pane.session_id)
            .send_text("ls\\n")
            .build()
        )
    """

    def __init__(self, timeout: float | None = None):
        self._steps: list = [GetApp()]
        self._timeout = timeout

    def create_window(self, bind: str = "target", profile: str | None = None) -> "StepBuilder":
        self._steps.append(CreateWindow(bind=bind, profile=profile))
        return self

    def find_session(self, session_id: str, bind: str = "target") -> "StepBuilder":
        self._steps.append(FindSession(session_id=session_id, bind=bind))
        return self

    def send_text(self, text: str, ref: str = "target") -> "StepBuilder":
        self._steps.append(SendText(text=text, ref=ref))
        return self

    def send_text_to(self, session_id: str, text: str, collect: str) -> "StepBuilder":
        self._steps.append(SendText(text=text, session_id=session_id, collect=collect))
        return self

    def split(
        self,
        vertical: bool,
        ref: str = "target",
        bind: str = "new",
        profile: str | None = None,
    ) -> "StepBuilder":
        self._steps.append(Split(ref=ref, vertical=vertical, bind=bind, profile=profile))
        return self

    def get_variables(
        self,
        names: list[str],
        into: str,
        ref: str = "target",
        lenient: bool = False,
    ) -> "StepBuilder":
        self._steps.append(GetVariables(ref=ref, names=list(names), into=into, lenient=lenient))
        return self

    def grid_size(self, into: str = "size", ref: str = "target") -> "StepBuilder":
        self._steps.append(GridSize(ref=ref, into=into))
        return self

    def set_tab_color(
        self,
        rgb: tuple[float, float, float],
        label: str,
        ref: str = "target",
    ) -> "StepBuilder":
        self._steps.append(SetTabColor(ref=ref, rgb=rgb, label=label))
        return self

    def monitor(
        self,
        fields: dict[str, str],
        duration: float,
        interval: float,
        into: str = "changes",
        ref: str = "target",
    ) -> "StepBuilder":
        self._steps.append(
            Monitor(ref=ref, fields=dict(fields), duration=duration, interval=interval, into=into)
        )
        return self

    def list_sessions(self, into: str = "windows") -> "StepBuilder":
        self._steps.append(ListSessions(into=into))
        return self

    def list_session_ids(self, into: str = "session_ids") -> "StepBuilder":
        self._steps.append(ListSessionIds(into=into))
        return self

    def export(self, attr: str, key: str, ref: str = "target") -> "StepBuilder":
        self._steps.append(Export(ref=ref, attr=attr, key=key))
        return self

    def build(self) -> StepProgram:
        if self._timeout is None:
            return StepProgram(steps=list(self._steps))
        return StepProgram(steps=list(self._steps), timeout=self._timeout)
