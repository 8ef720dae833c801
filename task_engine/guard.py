"""
安全策略 - 拦截破坏性操作

对每个操作可能提交出去的文本片段（按钮文本、输入内容、SQL、选择器、
通过 index 引用的页面元素文本）逐个判断：

1. 含撤销删除类短语 → 该片段安全
2. 命中危险 SQL（DROP TABLE / DROP VIEW）→ 拦截
3. 删除动词 + 受保护对象（表/任务/节点/dag ...）→ 拦截
4. 只有删除动词，但当前页面地址属于敏感页面 → 拦截
5. 其余 → 安全

关键词以 (语言, 关键词类别) 为键放在 KeywordTable 中，可以整体替换或扩展。
"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Pattern, Tuple

from .actions import BaseAction


DELETE_VERB = "delete_verb"
PROTECTED_OBJECT = "protected_object"
UNDO_PHRASE = "undo_phrase"
SENSITIVE_URL = "sensitive_url"

DEFAULT_KEYWORDS: Dict[Tuple[str, str], Tuple[str, ...]] = {
    ("zh", DELETE_VERB): ("删除", "移除", "清空", "清除"),
    ("en", DELETE_VERB): ("delete", "remove", "erase"),
    ("zh", PROTECTED_OBJECT): ("表", "任务", "作业", "节点"),
    ("en", PROTECTED_OBJECT): ("dag", "node", "table", "task"),
    ("zh", UNDO_PHRASE): ("取消删除", "撤销删除", "恢复", "放弃"),
    ("en", UNDO_PHRASE): ("undo delete", "cancel delete"),
    ("any", SENSITIVE_URL): (
        "data-manage/tables",
        "data-develop/tasks",
        "data-develop/dev",
        "data-develop/instances",
        "dag",
        "workflow",
        "node",
    ),
}

DEFAULT_SQL_PATTERNS: Tuple[Pattern, ...] = (
    re.compile(r"\bdrop\s+table\b", re.IGNORECASE),
    re.compile(r"\bdrop\s+view\b", re.IGNORECASE),
)

REASON_MAX_LENGTH = 120


@dataclass(frozen=True)
class KeywordTable:
    """
    关键词表

    Attributes:
        entries: (语言, 关键词类别) -> 关键词元组
        sql_patterns: 危险 SQL 正则
    """
    entries: Dict[Tuple[str, str], Tuple[str, ...]] = field(default_factory=lambda: dict(DEFAULT_KEYWORDS))
    sql_patterns: Tuple[Pattern, ...] = DEFAULT_SQL_PATTERNS

    def keywords(self, keyword_class: str) -> List[str]:
        """某一类别在所有语言下的关键词（小写）"""
        words: List[str] = []
        for (_, cls), values in self.entries.items():
            if cls == keyword_class:
                words.extend(value.lower() for value in values)
        return words

    def with_keywords(self, language: str, keyword_class: str, keywords: Iterable[str]) -> "KeywordTable":
        """返回追加了关键词的新表"""
        entries = dict(self.entries)
        entries[(language, keyword_class)] = tuple(entries.get((language, keyword_class), ())) + tuple(keywords)
        return KeywordTable(entries=entries, sql_patterns=self.sql_patterns)


@dataclass
class SafetyContext:
    """
    判断时的页面上下文

    Attributes:
        url: 当前页面地址
        last_page_info: 最近一次 get_page_info 的结果（clickables / inputs ...）
    """
    url: str = ""
    last_page_info: Optional[Dict[str, Any]] = None


# 每种操作需要检查的字段
_CANDIDATE_FIELDS: Dict[str, Tuple[str, ...]] = {
    "click": ("selector", "target", "text", "文本", "参数"),
    "type": ("selector", "text", "value", "内容", "值", "参数"),
    "input_sql": ("sql", "参数"),
}

# index 引用的 get_page_info 元素列表
_INDEXED_ELEMENTS: Dict[str, str] = {
    "click": "clickables",
    "type": "inputs",
}


def collect_candidates(action: BaseAction, last_page_info: Optional[Dict[str, Any]] = None) -> List[str]:
    """
    收集操作中所有可能被提交的文本片段

    click / type 通过 index 引用页面元素时，使用 last_page_info 中缓存的元素文本和选择器。
    """
    candidates: List[Any] = []
    name = action.name

    if name in _INDEXED_ELEMENTS:
        index = action.value_of("index")
        if index is None:
            index = action.value_of("索引")
        elements = (last_page_info or {}).get(_INDEXED_ELEMENTS[name]) or []
        if isinstance(index, int) and 0 <= index < len(elements) and isinstance(elements[index], dict):
            item = elements[index]
            candidates.extend(item.get(key) for key in ("text", "placeholder", "selector"))

    for key in _CANDIDATE_FIELDS.get(name, ()):
        candidates.append(action.value_of(key))

    return [str(value) for value in candidates if value]


class SafetyPolicy:
    """破坏性操作拦截"""

    def __init__(self, table: Optional[KeywordTable] = None):
        self.table = table or KeywordTable()

    def check_text(self, text: str, url: str = "") -> Optional[str]:
        """
        检查单个文本片段

        Returns:
            拦截原因（原文前 120 字符），安全时返回 None
        """
        raw = (text or "").strip()
        if not raw:
            return None
        lowered = raw.lower()
        reason = raw[:REASON_MAX_LENGTH]

        if any(phrase in lowered for phrase in self.table.keywords(UNDO_PHRASE)):
            return None

        if any(pattern.search(lowered) for pattern in self.table.sql_patterns):
            return reason

        if not any(verb in lowered for verb in self.table.keywords(DELETE_VERB)):
            return None

        if any(obj in lowered for obj in self.table.keywords(PROTECTED_OBJECT)):
            return reason

        url_lower = (url or "").lower()
        if any(hint in url_lower for hint in self.table.keywords(SENSITIVE_URL)):
            return reason

        return None

    def classify(self, action: BaseAction, context: Optional[SafetyContext] = None) -> Optional[str]:
        """
        判断操作是否为破坏性操作

        Args:
            action: 待执行的操作
            context: 页面上下文

        Returns:
            拦截原因，安全时返回 None
        """
        context = context or SafetyContext()
        for candidate in collect_candidates(action, context.last_page_info):
            reason = self.check_text(candidate, context.url)
            if reason:
                return reason
        return None
