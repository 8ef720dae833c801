"""
提示词构建

- 系统提示词（操作说明 + 平台地址 + 任务类别相关的强制流程）
- 任务类别判定与各类别的证据操作集合
- 每步执行后的跟进提示、纠正提示
- 任务开始前的自动导航目标
"""
import json
import re
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional

from .actions import ACTION_NAMES, BaseAction
from .models import ActionResult


DEFAULT_PLATFORM_BASE_URL = "https://shenzhou.tatstm.com"

TASK_LOGIC_INSPECTION = "task_logic_inspection"

# 各任务类别下，被视为"已真实获取信息"的操作
EVIDENCE_ACTIONS: Dict[str, FrozenSet[str]] = {
    TASK_LOGIC_INSPECTION: frozenset({"get_result", "get_page_info", "get_dag_info"}),
}

UNPARSEABLE_HINT = (
    '你返回的内容无法解析为 JSON。请只返回一个纯 JSON 对象，例如 '
    '{"action":"get_page_info"}，不要包含 markdown 代码块或额外说明。'
)
EVIDENCE_REQUIRED_HINT = "你不能在未获取页面信息前总结。请按流程操作后再 finish。"
LOOP_HINT = "检测到可能的循环。请检查任务是否已完成，如果已完成请使用 finish 操作。"
EXECUTE_FOLLOWUP = "SQL 查询已执行。现在请：1) wait 5秒 2) get_result 3) finish"

_QUERY_KEYWORDS = (
    "select ", "from ", "where ", "group by", "order by", "sum(", "count(",
    "sql", "查询", "临时查询", "cost", "row_count", "total_cost",
)

_TASK_NAME_PATTERNS = (
    re.compile(r"任务\s*[:：]?\s*([^\n，。,]{2,60}?)(?:\s*的\s*(?:逻辑|SQL|脚本|代码)|\s*(?:逻辑|SQL|脚本|代码))"),
    re.compile(r"查看\s*([^\n，。,]{2,60}?)\s*(?:任务|作业)\s*(?:逻辑|SQL|脚本|代码)"),
    re.compile(r"查看(?:神舟)?任务\s*([^\n，。,]{2,60}?)(?:的|逻辑|SQL|脚本|代码)"),
)


@dataclass
class TaskInspection:
    """任务逻辑查看类任务的判定结果"""
    ok: bool
    name: str = ""


def platform_urls(base_url: str = DEFAULT_PLATFORM_BASE_URL) -> Dict[str, str]:
    base = base_url.rstrip("/")
    return {
        "base": base,
        "query": f"{base}/data-develop/query",
        "tables": f"{base}/data-manage/tables",
        "tasks": f"{base}/data-develop/tasks",
        "instances": f"{base}/data-develop/instances",
        "dev": f"{base}/data-develop/dev",
    }


def build_skills_doc(base_url: str = DEFAULT_PLATFORM_BASE_URL) -> str:
    urls = platform_urls(base_url)
    return f"""操作：{", ".join(ACTION_NAMES)}

平台URL：
- 临时查询：{urls["query"]}
- 数据地图：{urls["tables"]}
- 任务列表：{urls["tasks"]}
- 任务实例：{urls["instances"]}

分区：date_p格式'20260101'，type_p使用'>=0000'
SQL：SELECT SUM(cost) AS total_cost, COUNT(*) AS row_count FROM 库.表 WHERE date_p>='开始' AND date_p<='结束' AND type_p>='0000'

规则：只返回一个JSON对象（不要数组/不要markdown/不要解释）；禁止删除表/任务/任务节点（包含 Drop Table）

- navigate: {{"action":"navigate","url":"https://..."}}
- wait: {{"action":"wait","seconds":0.2-2}}
- get_page_info: {{"action":"get_page_info"}}（获取当前页 clickables/inputs/scrollables 列表）
- click: {{"action":"click","selector":"CSS选择器或按钮文本"}} 或 {{"action":"click","index":0}}（优先用 get_page_info 的 index）
- click_at: {{"action":"click_at","x":100,"y":200}}
- type: {{"action":"type","selector":"CSS选择器或输入框提示","text":"要输入的内容"}} 或 {{"action":"type","index":0,"text":"..."}}
- scroll: {{"action":"scroll","direction":"down|up","amount":800}}
- scroll_to: {{"action":"scroll_to","position":"top|bottom"}} 或 {{"action":"scroll_to","top":1200}}
- scroll_to_text: {{"action":"scroll_to_text","text":"关键字","occurrence":1}}
- scroll_container: {{"action":"scroll_container","index":0,"direction":"down","amount":600}}
- wheel: {{"action":"wheel","x":200,"y":300,"deltaY":800}}
- drag: {{"action":"drag","from":{{"selector":"CSS"}},"to":{{"x":600,"y":400}},"steps":20}}
- input_sql: {{"action":"input_sql","sql":"SELECT ..."}}
- click_format: {{"action":"click_format"}}
- click_execute: {{"action":"click_execute"}}
- get_result: {{"action":"get_result"}}
- click_rerun: {{"action":"click_rerun","rerun_type":"latest|instance"}}
- click_dag_view: {{"action":"click_dag_view"}}
- get_dag_info: {{"action":"get_dag_info"}}
- confluence_search: {{"action":"confluence_search","query":"关键词"}}
- confluence_get_content: {{"action":"confluence_get_content","page_id":"页面ID"}}
- finish: {{"action":"finish","result":"结果文本"}}"""


SKILLS_DOC = build_skills_doc()


def extract_task_name(text: str) -> str:
    """从任务描述中提取任务名"""
    s = (text or "").strip()
    if not s:
        return ""
    for pattern in _TASK_NAME_PATTERNS:
        match = pattern.search(s)
        if match and match.group(1):
            return match.group(1).strip()
    return ""


def looks_like_task_logic_inspection(task: str) -> TaskInspection:
    """判断是否为"查看任务逻辑"类任务"""
    t = (task or "").strip()
    if not t:
        return TaskInspection(ok=False)
    has_task_word = re.search(r"任务|作业|调度|实例", t) is not None
    wants_logic = re.search(r"逻辑|SQL|脚本|代码|编辑|开发|依赖|DAG", t) is not None
    return TaskInspection(ok=has_task_word and wants_logic, name=extract_task_name(t))


def classify_task(task: str) -> Optional[str]:
    """任务类别；没有特殊要求时返回 None"""
    if looks_like_task_logic_inspection(task).ok:
        return TASK_LOGIC_INSPECTION
    return None


def is_query_like(task: str) -> bool:
    lowered = (task or "").lower()
    return any(keyword in lowered for keyword in _QUERY_KEYWORDS)


def build_task_inspect_hint(inspection: TaskInspection, base_url: str = DEFAULT_PLATFORM_BASE_URL) -> str:
    if not inspection.ok:
        return ""
    name = inspection.name or "任务名"
    tasks_url = platform_urls(base_url)["tasks"]
    return f"""
【任务逻辑查看规范 - 必须严格遵守】
你必须真实打开页面获取信息，不允许凭空总结。
目标任务名：{inspection.name or "（从页面搜索）"}

强制操作流程：
1) navigate 到 {tasks_url}
2) get_page_info → 找到任务名称搜索输入框
3) type → 在搜索框输入"{name}"
4) click → 点击搜索按钮
5) wait → 等待搜索结果加载完成
6) get_page_info → 确认搜索结果中出现"{name}"
7) click → 点击目标任务名称或"编辑"按钮
8) get_page_info → 获取任务详情页面状态
9) get_result → 抓取任务SQL/说明/输入输出表/调度信息
10) 如需依赖：click_dag_view / get_dag_info
11) finish → 用要点总结（目的/来源/口径/产出/分区/调度/依赖/注意事项）

严格禁止：
- 跳过搜索步骤直接点击列表中的任务
- 在未 get_result 或 get_dag_info 之前就 finish
"""


def build_system_prompt(
    task: str,
    context_text: str = "",
    skills_block: str = "",
    base_url: str = DEFAULT_PLATFORM_BASE_URL,
) -> str:
    """
    构建任务系统提示词

    Args:
        task: 用户任务
        context_text: 最近对话上下文（截断到 3500 字）
        skills_block: 自定义技能说明
        base_url: 目标平台地址

    Returns:
        str: 系统提示词
    """
    inspect_hint = build_task_inspect_hint(looks_like_task_logic_inspection(task), base_url)

    clipped = (context_text or "").strip()[:3500]
    context_block = f"\n【最近对话上下文】\n{clipped}\n（请结合上下文理解用户目标与约束）\n" if clipped else ""
    skill_block = f"\n{skills_block}\n" if skills_block else ""

    return f"""数仓助手。返回一个JSON操作。

{build_skills_doc(base_url)}
{skill_block}
{inspect_hint}
{context_block}

问题：{task}

重要：
- 根据用户目标决定是否需要 navigate（不要盲目跳到临时查询页）
- 如果不知道点哪个/填哪个，先 get_page_info 再 click/type
- 每次只返回一个操作；尽量少步骤；thinking 用中文简短说明

返回：{{"action":"操作名", ...}}（只一个操作，不要数组）
"""


def resolve_start_url(task: str, current_url: str, base_url: str = DEFAULT_PLATFORM_BASE_URL) -> Optional[str]:
    """
    任务开始前是否需要自动打开某个页面

    Returns:
        需要打开的地址；当前页面可用时返回 None
    """
    urls = platform_urls(base_url)
    on_platform = bool(current_url) and current_url.startswith(urls["base"])
    if on_platform:
        return None
    if looks_like_task_logic_inspection(task).ok:
        return urls["tasks"]
    if is_query_like(task):
        return urls["query"]
    return None


def build_unknown_action_hint(action_name: str) -> str:
    return f"不支持的操作：{action_name}。可用操作：{', '.join(ACTION_NAMES)}。{UNPARSEABLE_HINT}"


def build_invalid_params_hint(action_name: str, field_errors: List[str]) -> str:
    return f"操作 {action_name} 的参数无效：{'; '.join(field_errors)}。请修正参数后重新返回一个 JSON 对象。"


def build_followup(action: BaseAction, result: ActionResult) -> str:
    """根据执行结果生成下一步提示"""
    if action.name == "click_execute" and result.success:
        return EXECUTE_FOLLOWUP

    if action.name == "get_result" and result.success and (result.get("formatted") or result.get("data")):
        payload = result.get("formatted") or json.dumps(result.get("data"), ensure_ascii=False)
        return f"查询结果已获取：{payload}。请立即 finish。"

    return f"操作已执行。结果: {json.dumps(result.to_dict(), ensure_ascii=False)}。请继续下一步操作。"
