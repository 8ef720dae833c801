"""
Action 词汇表

每个操作是一个以 action 字段区分的 pydantic 模型，Action 是它们的
封闭联合类型。未知的 action 名称在解析阶段就会被拒绝，不会进入执行器。

模型输出里常带有额外字段（思路、说明、target 等），这些字段被保留在
model_extra 中，安全策略会用到它们。
"""
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


class BaseAction(BaseModel):
    """所有操作的公共字段"""
    model_config = ConfigDict(extra="allow", populate_by_name=True, coerce_numbers_to_str=True)

    thinking: Optional[str] = None

    @property
    def name(self) -> str:
        return self.action

    def value_of(self, key: str) -> Any:
        """读取声明字段或模型附带的额外字段"""
        if key in type(self).model_fields:
            return getattr(self, key)
        return (self.model_extra or {}).get(key)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class NavigateAction(BaseAction):
    action: Literal["navigate"]
    url: Optional[str] = None


class WaitAction(BaseAction):
    action: Literal["wait"]
    seconds: Optional[float] = None


class GetPageInfoAction(BaseAction):
    action: Literal["get_page_info"]


class ClickAction(BaseAction):
    action: Literal["click"]
    selector: Optional[str] = None
    index: Optional[int] = None


class ClickAtAction(BaseAction):
    action: Literal["click_at"]
    x: Optional[float] = None
    y: Optional[float] = None


class TypeAction(BaseAction):
    action: Literal["type"]
    selector: Optional[str] = None
    index: Optional[int] = None
    text: Optional[str] = None


class InputSqlAction(BaseAction):
    action: Literal["input_sql"]
    sql: Optional[str] = None


class ClickFormatAction(BaseAction):
    action: Literal["click_format"]


class ClickExecuteAction(BaseAction):
    action: Literal["click_execute"]


class GetResultAction(BaseAction):
    action: Literal["get_result"]


class ScrollAction(BaseAction):
    action: Literal["scroll"]
    direction: Optional[str] = None
    amount: Optional[float] = None


class ScrollToAction(BaseAction):
    action: Literal["scroll_to"]
    position: Optional[str] = None
    top: Optional[float] = None


class ScrollToTextAction(BaseAction):
    action: Literal["scroll_to_text"]
    text: Optional[str] = None
    occurrence: Optional[int] = None


class ScrollContainerAction(BaseAction):
    action: Literal["scroll_container"]
    selector: Optional[str] = None
    index: Optional[int] = None
    direction: Optional[str] = None
    amount: Optional[float] = None


class WheelAction(BaseAction):
    action: Literal["wheel"]
    x: Optional[float] = None
    y: Optional[float] = None
    deltaY: Optional[float] = None


class DragAction(BaseAction):
    action: Literal["drag"]
    from_: Optional[Dict[str, Any]] = Field(default=None, alias="from")
    to: Optional[Dict[str, Any]] = None
    steps: Optional[int] = None


class ClickRerunAction(BaseAction):
    action: Literal["click_rerun"]
    rerun_type: Optional[str] = None


class ClickDagViewAction(BaseAction):
    action: Literal["click_dag_view"]


class GetDagInfoAction(BaseAction):
    action: Literal["get_dag_info"]


class ConfluenceSearchAction(BaseAction):
    action: Literal["confluence_search"]
    query: Optional[str] = None


class ConfluenceGetContentAction(BaseAction):
    action: Literal["confluence_get_content"]
    page_id: Optional[str] = None


class FinishAction(BaseAction):
    action: Literal["finish"]
    result: Optional[Any] = None


Action = Annotated[
    Union[
        NavigateAction,
        WaitAction,
        GetPageInfoAction,
        ClickAction,
        ClickAtAction,
        TypeAction,
        InputSqlAction,
        ClickFormatAction,
        ClickExecuteAction,
        GetResultAction,
        ScrollAction,
        ScrollToAction,
        ScrollToTextAction,
        ScrollContainerAction,
        WheelAction,
        DragAction,
        ClickRerunAction,
        ClickDagViewAction,
        GetDagInfoAction,
        ConfluenceSearchAction,
        ConfluenceGetContentAction,
        FinishAction,
    ],
    Field(discriminator="action"),
]

ACTION_NAMES = (
    "navigate", "wait", "get_page_info", "click", "click_at", "type",
    "input_sql", "click_format", "click_execute", "get_result",
    "scroll", "scroll_to", "scroll_to_text", "scroll_container", "wheel", "drag",
    "click_rerun", "click_dag_view", "get_dag_info",
    "confluence_search", "confluence_get_content", "finish",
)

_ACTION_ADAPTER = TypeAdapter(Action)


def to_action(obj: Dict[str, Any]) -> Optional[BaseAction]:
    """把解析出的 dict 转成具体的 Action；未知操作或字段类型错误返回 None"""
    try:
        return _ACTION_ADAPTER.validate_python(obj)
    except ValidationError:
        return None


def validation_errors(obj: Dict[str, Any]) -> List[str]:
    """
    已知操作的字段校验错误，例如 ["seconds: Input should be a valid number ..."]

    校验通过时返回空列表。
    """
    try:
        _ACTION_ADAPTER.validate_python(obj)
    except ValidationError as e:
        messages = []
        for error in e.errors():
            field = ".".join(str(part) for part in error["loc"][1:]) or "action"
            messages.append(f"{field}: {error['msg']}")
        return messages
    return []
