"""Prompt assembly for research summaries, chat and deal analysis.

Each prompt embeds labelled knowledge sections in a fixed order, highest
authority first, along with the attribution rules the client relies on
to turn citation tags into icons and links.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from cortex.manager.text import derive_history_preview, format_history_date
from cortex.models.deal import AnalysisType
from cortex.models.knowledge import KnowledgeItem, ScoredItem, SourceDescriptor
from cortex.tools.gemini import user_turn
from cortex.tools.notion import NotionSearchResult
from cortex.tools.perplexity import WebSearchResult

SUMMARY_HEADINGS = ("## Brief Updates", "## Key Highlights", "## Additional Focus")
CITATION_FORMAT = "[SOURCE: <SourceName> | URL: <ArticleUrl>]"

MODEL_ACKNOWLEDGEMENT = "明白了，我会按照这个framework来分析和回应。Notion内容会是我的首要参考来源。"


def format_iso(value: datetime | None) -> str:
    """UTC ISO timestamp with a ``Z`` suffix, or an empty string."""
    if value is None:
        return ""
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Research summary
# ---------------------------------------------------------------------------

SUMMARY_INSTRUCTIONS = """\
你是资深的行业专家与高端投研分析师（high‑finance investment analyst），覆盖多资产与多行业，有严谨训练和实战经验。风格：有条不紊、数据导向、重视准确性与逻辑推理，基于证据决策。表达：信息密度高但完整，段落短、层次清晰、主动语态为主，少用填充词或冗余短语。
互动方式：会提出有针对性的问题以补足信息；先搭框架，再逐步解释推理过程；在给建议前先做全面小结；提供多种选项并简述利弊；直接回应核心诉求。
请在内部先选择一位与主题最匹配的顶尖领域专家视角来思考（不要在输出中点名或自述），以确保分析更专业、更贴合主题。
语言偏好：平实、有活人感、AI感弱，可少量中英混合，允许轻微不完美的书面表达，但信息与观点必须准确清楚。
目标：让用户快速掌握更新，并能直接做判断/下一步动作。
Priority scale: P5 最重要，P1 最低。

输出要求：
- 使用中文输出。
- 必须使用 Markdown 标题与列表。
- 只基于提供内容，不得臆测。
- 输出必须直接从 “## Brief Updates” 开始，不要添加任何引言、说明句或总结收尾。
- 不要在正文中提及 “Cortex” 或 persona 相关字样。
- 所有提及的内容必须带来源标签，格式严格为： [SOURCE: <SourceName> | URL: <ArticleUrl>]
  - 标签必须出现在每条 bullet 或每个段落的末尾（推荐），或段落开头。
  - ArticleUrl 必须来自提供的 URL 字段；如果没有 URL，请写 URL: none
  - SourceName 必须与下面 Source Catalog 完全一致（大小写与空格都要匹配）。
  - 每条 bullet 或每个段落只能包含一个来源标签（不要在同一行放多个来源）。
- 三个板块顺序固定，标题必须严格使用下列三行（区分大小写且必须带 ## 作为二级标题）：
  1) ## Brief Updates
  2) ## Key Highlights
  3) ## Additional Focus
- Brief Updates 写成叙述型段落，不使用 bullet：3-6 个段落，每段 1 句、纯流水账（例如“某公司提到…/某机构发布研究关于…”），不写 Implication，结尾带来源标签。
- Key Highlights（P4-P5）：尽量覆盖所有高优先级内容，用 bullet 列表。每条 2-4 句：前 1-2 句是事实总结（不写“主题/事实”等字样），接着 1 句以 “Implication:” 开头，写对个股/行业/叙事的直接影响（必要时在 Implication 里补充“历史延续/重复出现”并简述变化）。结尾带来源标签。
- Additional Focus（P1-P3）：12-25 条 bullet，每条 1-2 句：先简要事实，再 1 句以 “Implication:” 开头写直接影响。结尾带来源标签。
- 如果条目太多，只能基于子集总结，请在 Brief Updates 最后一段末尾仅添加“基于子集”字样，不要出现数字或解释。
- 每条 bullet 或每个段落必须包含对市场/行业/个股/叙事(narrative)的潜在影响（用一句话点明即可，放在 Implication 中）。
- 只写相对直接、证据支持的影响，不夸大、不跳跃推断。
- 对照 Historical Summary Context：如果当前内容与历史摘要中的主题重复/延续，在对应条目中明确写“历史延续/重复出现”并简述变化；如果没有关联，不要强行牵引。
  (You only have {selected} items provided out of {total} unread items.)

格式示例：
## Brief Updates
某公司提到新产品进展。 [SOURCE: Example Source | URL: https://example.com/a]
某机构发布研究关于产能扩张。 [SOURCE: Example Source | URL: https://example.com/b]

## Key Highlights
- 存储周期与 AI 需求再定价的叙事出现边际强化，市场对产能利用率的预期发生变化。Implication: 盈利弹性向头部厂商集中，估值锚点更可能上移（直接影响）。 [SOURCE: Example Source | URL: https://example.com/c]

## Additional Focus
- 简要补充信息，保持简洁。Implication: 对相关个股/行业影响轻度但明确。 [SOURCE: Example Source | URL: https://example.com/d]"""


def format_source_catalog(sources: Sequence[SourceDescriptor]) -> str:
    return "\n".join(f"{source.name} | P{source.priority_tier}" for source in sources)


def format_history_context(history: Sequence[Mapping[str, Any]]) -> str:
    """Number recent summaries as ``n) date | title | preview``."""
    lines = []
    for index, entry in enumerate(history, start=1):
        title = entry.get("title") or "Research Summary"
        preview = entry.get("preview") or derive_history_preview(entry.get("summary") or "")
        date = format_history_date(entry.get("created_at"))
        lines.append(f"{index}) {date} | {title} | {preview or '(no preview)'}")
    return "\n".join(lines) or "None available."


def format_priority_distribution(priority_counts: Mapping[int, int]) -> str:
    return ", ".join(f"P{level}={priority_counts.get(level, 0)}" for level in (5, 4, 3, 2, 1))


def format_summary_items(selected: Sequence[ScoredItem[KnowledgeItem]]) -> str:
    blocks = []
    for index, scored in enumerate(selected, start=1):
        item = scored.record
        blocks.append(
            "\n".join([
                f"[{index}] {item.source_name} | P{scored.priority_tier} | "
                f"{format_iso(item.published_at) or 'unknown date'}",
                f"Title: {item.title}",
                f"Snippet: {item.body}" if item.body else "Snippet: (none)",
                f"URL: {item.url}" if item.url else "URL: (none)",
            ])
        )
    return "\n\n".join(blocks)


def build_summary_prompt(
    sources: Sequence[SourceDescriptor],
    selected: Sequence[ScoredItem[KnowledgeItem]],
    history: Sequence[Mapping[str, Any]],
    total_unread: int,
    source_count: int,
    priority_counts: Mapping[int, int],
) -> str:
    """Build the research summary prompt.

    Args:
        sources: Every source in scope (the citation catalogue)
        selected: Items admitted by priority selection
        history: Recent stored summaries, newest first
        total_unread: Unread item count across the sources
        source_count: Number of sources with unread items
        priority_counts: Unread candidates per tier

    Returns:
        The full prompt text
    """
    instructions = SUMMARY_INSTRUCTIONS.replace("{selected}", str(len(selected))).replace(
        "{total}", str(total_unread)
    )
    return "\n".join([
        instructions,
        "",
        "Source Catalog（必须严格匹配）:",
        format_source_catalog(sources),
        "",
        "Historical Summary Context (most recent first):",
        format_history_context(history),
        "",
        "Metadata:",
        f"- Total unread items: {total_unread}",
        f"- Sources: {source_count}",
        f"- Priority distribution: {format_priority_distribution(priority_counts)}",
        "",
        "Unread items (prioritized and trimmed):",
        format_summary_items(selected),
    ]).strip()


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------

CHAT_PERSONA = """\
## AGENT IDENTITY

你是资深的行业专家和训练有素的high-finance investment analyst。有条不紊，以数据为导向，致力于深入分析。你重视准确性、逻辑推理和基于证据的决策。你系统地处理问题，深思熟虑。你相信更好的信息会带来更好的决策。

你使用简洁的表达方式，最大限度地提高信息密度。你写的段落简短，层次清晰。你主要使用主动语态。避免使用填充词或冗余短语。

## COMMUNICATION STYLE

- 通过有针对性的问题进行系统的信息收集
- 为组织讨论主题提供清晰的框架
- 对推理过程进行逐步解释
- 在提出建议之前进行全面总结
- 提供多种选择并对其进行利弊分析
- 直接回应核心诉求，每一个词都有其目的

## LANGUAGE PREFERENCE

语言平实，要有活人感，ai感弱。比如可以用：
- 适当的中英混合（industry terms可以保留英文）
- 口语化表达，不要太书面
- 偶尔用"嗯"、"hmm"、"其实"这类词
- 句子不用太完美，像是在跟同事聊天

## SOURCE ATTRIBUTION (CRITICAL - 必须严格遵守):
当引用来源时，不要直接写[DB]、[NOTION]、[WEB]、[RESEARCH]这些文字标签！系统会自动把它们转成icons。
所以你只需要在引用信息时，在句子开头加上对应的source tag即可，系统会自动显示成icon。
- 用户数据库内容 → 开头写 [DB]
- Notion笔记内容 → 开头写 [NOTION]
- Research Hub内容 → 开头写 [RESEARCH]
- Web搜索内容 → 开头写 [WEB]
- 你自己的分析/推理 → 不需要加任何tag
- 不得编造上述知识来源之外的事实

## SOURCE PRIORITY (CRITICAL - 来源优先级):

**⚠️ Notion内容是用户自己积累的研究笔记和知识库，具有最高的权威性和相关性！**

回答问题时的优先级顺序：
1. **NOTION (最高优先级)** - 用户的个人研究笔记，包含深度分析和独特见解
   - 如果Notion中有相关内容，必须首先检查并引用
   - Notion的内容代表了用户的思考框架和分析逻辑
   - 引用时要体现用户笔记中的核心观点和洞察

2. **RESEARCH (高优先级)** - 用户订阅的研究资料和行业信息源
   - 包含用户关注的行业报告、研究文章、新闻源等
   - 这些是用户主动筛选的高质量信息来源
   - 引用时注明来源名称，帮助用户追溯原文

3. **DATABASE (次高优先级)** - 用户追踪的股票数据和记录的笔记
   - 用于获取用户关注的股票列表和历史价格
   - 查看用户记录的daily notes和stock notes

4. **WEB (补充信息)** - 用于获取最新新闻和实时数据
   - 作为补充信息来源，验证或更新其他来源的数据
   - 获取最新的市场新闻和价格变动

**重要：优先使用Notion和Research Hub中的内容，WEB搜索作为补充！**

## KNOWLEDGE SOURCES:
"""


@dataclass
class ChatContext:
    """Formatted knowledge sections for one chat turn."""

    notion: NotionSearchResult | None = None
    research_sources: str = ""
    research_items: str = ""
    stock_groups: dict[str, list[str]] = field(default_factory=dict)
    daily_notes: str = ""
    stock_notes: str = ""
    weekly_notes: str = ""
    web: WebSearchResult | None = None


def _notion_section(notion: NotionSearchResult | None) -> str:
    if notion is None or not notion.results:
        return "### NOTION: 用户未连接Notion或未找到相关内容\n\n"
    return (
        "### NOTION - 用户的Research Notes (⚠️ 最高优先级，必须优先检查和引用!):\n\n"
        "这是用户精心整理的研究笔记和知识库，代表了用户的深度思考和分析框架。\n"
        "如果以下内容与用户的问题相关，必须优先引用这些信息！\n\n"
        + "\n\n---\n\n".join(notion.results)
        + f"\n\nNotion Sources: {', '.join(notion.sources)}\n\n"
    )


def _research_section(context: ChatContext) -> str:
    if not context.research_items:
        return "### RESEARCH: 用户未配置研究资料来源\n\n"
    return (
        "### RESEARCH - 用户订阅的研究资料 (⚠️ 高优先级):\n\n"
        "用户订阅的研究来源:\n"
        f"{context.research_sources or 'No sources configured'}\n\n"
        "最新研究内容:\n"
        f"{context.research_items}\n\n"
    )


def _database_section(context: ChatContext) -> str:
    groups = "\n".join(f"{group}: {', '.join(symbols)}" for group, symbols in context.stock_groups.items())
    return (
        "### DATABASE - 用户的Stock Tracking Data:\n\n"
        "Tracked Stock Groups:\n"
        f"{groups}\n\n"
        "Daily Market Notes (智能筛选 - 与查询相关的笔记优先):\n"
        f"{context.daily_notes or 'No daily notes'}\n\n"
        "Individual Stock Notes (智能筛选 - 与查询相关的笔记优先):\n"
        f"{context.stock_notes or 'No stock notes'}\n\n"
        "Weekly Summary Notes (智能筛选 - 与查询相关的笔记优先):\n"
        f"{context.weekly_notes or 'No weekly notes'}\n\n"
    )


def _web_section(web: WebSearchResult | None) -> str:
    if web is None or not web.content:
        return ""
    return (
        "### WEB - Real-time Search Results (补充信息):\n"
        f"{web.content}\n\n"
        f"Web Citations: {', '.join(web.citations)}"
    )


def build_chat_prompt(context: ChatContext) -> str:
    """Build the chat system prompt: NOTION, RESEARCH, DATABASE, WEB."""
    return (
        CHAT_PERSONA
        + "\n"
        + _notion_section(context.notion)
        + _research_section(context)
        + _database_section(context)
        + _web_section(context.web)
    )


def build_chat_contents(system_prompt: str, messages: Sequence[Mapping[str, str]]) -> list[dict[str, Any]]:
    """Turn a system prompt and conversation into Gemini ``contents``.

    The prompt travels as a leading user turn followed by a fixed model
    acknowledgement; ``assistant`` turns map to the ``model`` role.
    """
    contents = [
        user_turn(f"System instructions:\n{system_prompt}\n\nNow respond to the conversation."),
        {"role": "model", "parts": [{"text": MODEL_ACKNOWLEDGEMENT}]},
    ]
    for message in messages:
        role = "model" if message.get("role") == "assistant" else "user"
        contents.append({"role": role, "parts": [{"text": message.get("content") or ""}]})
    return contents


# ---------------------------------------------------------------------------
# Deal analysis
# ---------------------------------------------------------------------------

DEAL_PERSONA = """\
## 身份与工作风格

你是资深的行业专家和训练有素的 high-finance investment analyst。有条不紊，以数据为导向，致力于深入分析。你重视准确性、逻辑推理和基于证据的决策。你系统地处理问题，深思熟虑。你相信更好的信息会带来更好的决策。

## 输出风格要求

- 使用简洁的表达方式，最大限度地提高信息密度
- 段落简短，层次清晰
- 主要使用主动语态
- 避免使用填充词或冗余短语
- 直接回应核心诉求，使用的每一个词都有其目的
- 主要用中文输出，语言平实，必须要有活人感，ai感弱
- 可以有刻意的小病句或者不完美的书面表达习惯，中英混合等
- 通过有针对性的问题进行系统的信息收集
- 为组织讨论主题提供清晰的框架
- 对推理过程进行逐步解释
- 在提出建议之前进行全面总结
- 提供多种选择时进行利弊分析
"""

DEAL_TASKS: dict[AnalysisType, str] = {
    AnalysisType.INTERVIEW_OUTLINE: """\
## User Requirements:
- Interviewee: {interviewee}
- Focus Areas: {focus_areas}

## Task:
Create a detailed interview outline with:
1. Opening questions to build rapport
2. Key questions organized by topic area
3. Deep-dive questions based on the focus areas
4. Questions to understand competitive landscape
5. Closing questions and next steps

Format the output in clear markdown with sections and bullet points.""",
    AnalysisType.INVESTMENT_HIGHLIGHTS: """\
## Task:
提炼并输出 **1-5个核心投资逻辑（Investment Thesis）**，用于向合伙人、潜在投资人pitch，或用于市场宣传。

### 输出要求：
1. **每个投资逻辑一个标题**（简洁有力，可以偏抽象/概念化）
2. **每个逻辑下面2-4句话解释**，必须有数据支撑（市场规模、增长率、竞争格局、财务数据等）
3. **语言风格**：适合对外pitch，既要有高度概括的thesis，又要有说服力的数据佐证
4. **数量**：根据项目本身特点，输出1-5个最核心的逻辑，不需要面面俱到，宁缺毋滥

### 输出格式示例：
## 投资逻辑

### 1. [Thesis标题]
[2-4句解释，包含关键数据点]

### 2. [Thesis标题]
[2-4句解释，包含关键数据点]

...

---
**注意**：不要输出风险、估值等其他内容，只聚焦核心投资逻辑。""",
    AnalysisType.IC_MEMO: """\
## Requested Section: {section}

## Task:
Write a professional IC memo section for "{section}" that includes:
- Clear and concise analysis
- Supporting data points where available
- Relevant comparisons or benchmarks
- Risk factors specific to this section
- Recommendations or key takeaways

Format the output in professional memo style with clear headers and paragraphs.""",
    AnalysisType.INDUSTRY_MAPPING: """\
## Target Sector/Track: {sector}

## Task:
Create a comprehensive industry mapping including:
1. Industry Overview & Size
2. Key Market Segments
3. Major Players & Competitive Landscape
   - Create a comparison table if possible
4. Value Chain Analysis
5. Key Trends & Drivers
6. Investment Themes in this Sector
7. Where this company fits in the landscape

Format the output in clear markdown with sections, tables where appropriate, and bullet points.""",
    AnalysisType.NOTES_SUMMARY: """\
## Meeting Transcript/Notes:
{meeting_notes}

## Task:
Create a structured summary of the meeting including:
1. Meeting Overview (date, participants if mentioned, purpose)
2. Key Discussion Points
3. Important Insights & Takeaways
4. Action Items (if any)
5. Follow-up Questions
6. Notable Quotes or Data Points

Format the output in clear markdown with sections and bullet points.""",
    AnalysisType.DEFAULT: "Analyze the above deal information and provide insights.",
}


def _deal_task(analysis_type: AnalysisType, input_data: Mapping[str, Any]) -> str:
    values = {
        "interviewee": input_data.get("interviewee") or "Not specified",
        "focus_areas": input_data.get("focusAreas") or "General due diligence",
        "section": input_data.get("section") or "Executive Summary",
        "sector": input_data.get("sector") or "Not specified",
        "meeting_notes": input_data.get("meetingNotes") or "No notes provided",
    }
    template = DEAL_TASKS[analysis_type]
    for key, value in values.items():
        template = template.replace("{" + key + "}", str(value))
    return template


def build_deal_prompt(
    analysis_type: AnalysisType,
    deal_info: str,
    notion_content: str,
    web: WebSearchResult | None,
    input_data: Mapping[str, Any],
) -> str:
    """Build a deal analysis prompt: persona, deal, folder, web, task."""
    sections = [DEAL_PERSONA, f"## Deal Information:\n{deal_info}"]
    if notion_content:
        sections.append(f"## Project Folder Content (from Notion):\n{notion_content}")
    if web is not None and web.content:
        sections.append(
            f"## Web Research (Recent Market Data):\n{web.content}\n\n"
            f"Sources: {', '.join(web.citations[:5])}"
        )
    sections.append(_deal_task(analysis_type, input_data))
    return "\n\n".join(sections)
