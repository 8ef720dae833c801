"""
自定义技能 - 用户定义的操作说明，按 @提及 注入系统提示词

技能文件是一个 JSON 数组：
    [{"name": "成本周报", "handle": "weekly", "description": "...", "prompt": "...", "enabled": true}]

任务描述中出现 @weekly 时只注入被提及的技能；没有提及时注入全部已启用技能（最多 6 个）。
"""
import re
from pathlib import Path
from typing import Iterable, List, Optional

from loguru import logger
from pydantic import BaseModel, TypeAdapter, ValidationError

MAX_SKILLS = 6

_MENTION_PATTERN = re.compile(r"@([\w-]+)")


class Skill(BaseModel):
    """一个自定义技能"""
    name: str
    handle: Optional[str] = None
    description: str = ""
    prompt: str = ""
    enabled: bool = True

    @property
    def key(self) -> str:
        return normalize_skill_handle(self.handle or self.name)


_SKILLS_ADAPTER = TypeAdapter(List[Skill])


def normalize_skill_handle(value: Optional[str]) -> str:
    """去掉前导 @ 和所有空白，转小写"""
    return re.sub(r"\s+", "", str(value or "").strip().lstrip("@")).lower()


def extract_skill_mentions(text: str) -> List[str]:
    """按出现顺序提取 @提及，去重"""
    mentions: List[str] = []
    for match in _MENTION_PATTERN.finditer(text or ""):
        handle = normalize_skill_handle(match.group(1))
        if handle and handle not in mentions:
            mentions.append(handle)
    return mentions


def missing_skill_mentions(mentions: Iterable[str], skills: Iterable[Skill]) -> List[str]:
    handles = {skill.key for skill in skills if skill.key}
    return [mention for mention in mentions if normalize_skill_handle(mention) not in handles]


def build_custom_skills_block(
    skills: Iterable[Skill],
    mentions: Optional[Iterable[str]] = None,
    max_skills: int = MAX_SKILLS,
) -> str:
    """
    构建提示词中的技能块

    Args:
        skills: 全部技能
        mentions: @提及的 handle；非空时只保留被提及的技能
        max_skills: 最多注入的技能数

    Returns:
        str: 技能块，没有可用技能时为空字符串
    """
    enabled = [skill for skill in skills if skill.enabled]
    if not enabled:
        return ""

    wanted = [handle for handle in (normalize_skill_handle(m) for m in (mentions or [])) if handle]
    selected = [skill for skill in enabled if skill.key in wanted] if wanted else enabled
    selected = selected[:max_skills]
    if not selected:
        return ""

    lines = []
    for skill in selected:
        label = f"{skill.name}（@{skill.key}）" if skill.key else skill.name
        description = skill.description.strip()[:200] or "（暂无描述）"
        prompt = skill.prompt.strip()[:400]
        detail = f"\n  说明: {prompt}" if prompt else ""
        lines.append(f"- {label}: {description}{detail}")

    header = "【用户指定技能】" if wanted else "【用户自定义技能】"
    rule = "【执行规则】当用户 @技能 时，必须严格遵循对应技能说明与步骤，不要随意省略关键步骤。" if wanted else ""
    return f"{header}\n" + "\n".join(lines) + (f"\n{rule}" if rule else "")


def load_skills(path: Optional[str]) -> List[Skill]:
    """从 JSON 文件加载技能；文件不存在或格式错误时返回空列表"""
    if not path:
        return []
    skills_file = Path(path)
    if not skills_file.exists():
        logger.warning(f"⚠️ [Skills] 技能文件不存在: {path}")
        return []
    try:
        skills = _SKILLS_ADAPTER.validate_json(skills_file.read_text(encoding="utf-8"))
    except ValidationError as e:
        logger.error(f"❌ [Skills] 技能文件格式错误: {path} | {e.error_count()} 处错误")
        return []
    logger.info(f"📚 [Skills] 已加载 {len(skills)} 个技能")
    return skills
