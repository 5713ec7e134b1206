"""
Prompt templates, one per insight type.

Every prompt embeds the company context, a task, a list of focus areas
and a fenced JSON example with the fixed key set
(title, content, summary, keyMetrics, confidenceScore). Only the
keyMetrics keys differ between types. The builder never truncates the
document text; callers bound it with `core.pipeline.chunking.model_input`.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from core.db.models import InsightType

RESPONSE_KEYS = ("title", "content", "summary", "keyMetrics", "confidenceScore")


@dataclass(frozen=True)
class PromptTemplate:
    task: str
    focus_areas: tuple[str, ...]
    title: str
    content: str
    summary: str
    key_metrics: dict[str, str] = field(default_factory=dict)
    confidence: float = 0.8

    def example(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "content": self.content,
            "summary": self.summary,
            "keyMetrics": dict(self.key_metrics),
            "confidenceScore": self.confidence,
        }


TEMPLATES: dict[InsightType, PromptTemplate] = {
    InsightType.FINANCIAL_ANALYSIS: PromptTemplate(
        task="Analyze the financial performance of this company based on their annual report.",
        focus_areas=(
            "Revenue trends and growth rates",
            "Profitability metrics (margins, ROE, ROA)",
            "Balance sheet strength and liquidity",
            "Cash flow analysis",
            "Key financial ratios",
            "Year-over-year comparisons",
            "Financial outlook and guidance",
        ),
        title="Financial Performance Analysis",
        content=(
            "Detailed financial analysis (600-1000 words covering revenue growth, profitability, "
            "balance sheet strength, cash flows, and key financial ratios with specific numbers "
            "and percentages where available)"
        ),
        summary="2-3 sentence summary highlighting the most important financial insights",
        key_metrics={
            "revenue_growth": "percentage or amount",
            "profit_margin": "percentage",
            "debt_to_equity": "ratio",
            "current_ratio": "ratio",
            "roe": "percentage",
            "total_revenue": "amount with currency",
        },
        confidence=0.85,
    ),
    InsightType.BUSINESS_INSIGHTS: PromptTemplate(
        task="Provide strategic business insights based on this annual report.",
        focus_areas=(
            "Business model and strategic direction",
            "Market position and competitive advantages",
            "Operational efficiency and performance",
            "Management effectiveness and leadership",
            "Growth opportunities and expansion plans",
            "Strategic initiatives and major investments",
            "Innovation and technology adoption",
        ),
        title="Strategic Business Insights",
        content=(
            "Detailed strategic analysis (600-1000 words covering business strategy, competitive "
            "position, operational performance, and growth opportunities)"
        ),
        summary="2-3 sentence summary of key strategic insights",
        key_metrics={
            "market_position": "description",
            "employee_count": "number",
            "geographic_reach": "description",
            "key_initiatives": "number or description",
        },
        confidence=0.80,
    ),
    InsightType.EXECUTIVE_SUMMARY: PromptTemplate(
        task=(
            "Create an executive summary of this annual report suitable for busy investors "
            "and stakeholders."
        ),
        focus_areas=(
            "Company overview and business highlights",
            "Financial performance summary",
            "Major achievements and milestones",
            "Key challenges and risks",
            "Future outlook and strategic direction",
            "Investment thesis and value proposition",
        ),
        title="Executive Summary",
        content=(
            "Comprehensive executive summary (500-800 words covering all key aspects an "
            "executive would need to know)"
        ),
        summary="Top 3 most important points for investors and stakeholders",
        key_metrics={
            "total_revenue": "amount with currency",
            "net_income": "amount with currency",
            "employee_count": "number",
            "year_highlights": "brief description",
        },
        confidence=0.90,
    ),
    InsightType.RISK_ASSESSMENT: PromptTemplate(
        task="Assess the key risks facing this company based on their annual report.",
        focus_areas=(
            "Market and industry-specific risks",
            "Operational and business risks",
            "Financial and credit risks",
            "Regulatory and compliance risks",
            "Strategic and competitive risks",
            "Risk mitigation strategies and controls",
            "Management's risk assessment",
        ),
        title="Risk Assessment",
        content=(
            "Detailed risk analysis (600-1000 words identifying, categorizing, and evaluating "
            "key risks with mitigation strategies)"
        ),
        summary="Top 3 most significant risks investors should monitor",
        key_metrics={
            "overall_risk_level": "High/Medium/Low",
            "financial_risk": "High/Medium/Low",
            "operational_risk": "High/Medium/Low",
            "market_risk": "High/Medium/Low",
        },
        confidence=0.75,
    ),
    InsightType.ENTREPRENEURIAL_RECOMMENDATIONS: PromptTemplate(
        task=(
            "Provide entrepreneurial insights and actionable recommendations based on this "
            "annual report."
        ),
        focus_areas=(
            "Lessons for entrepreneurs and business builders",
            "Strategic decision-making insights",
            "Innovation and growth strategies",
            "Leadership and management lessons",
            "Market opportunity identification",
            "Operational excellence practices",
            "Scaling and expansion strategies",
        ),
        title="Entrepreneurial Insights & Recommendations",
        content=(
            "Detailed entrepreneurial analysis (600-1000 words with actionable insights and "
            "lessons for business leaders)"
        ),
        summary="Top 3 entrepreneurial lessons and recommendations",
        key_metrics={
            "innovation_score": "rating 1-10",
            "growth_strategy": "description",
            "leadership_effectiveness": "rating 1-10",
            "scalability": "High/Medium/Low",
        },
        confidence=0.80,
    ),
    InsightType.MARKET_ANALYSIS: PromptTemplate(
        task="Analyze the market context and competitive landscape based on this annual report.",
        focus_areas=(
            "Market size, growth trends, and dynamics",
            "Competitive positioning and market share",
            "Industry trends and disruptions",
            "Customer segments and market penetration",
            "Pricing strategies and market positioning",
            "Emerging opportunities and threats",
        ),
        title="Market & Industry Analysis",
        content=(
            "Detailed market analysis (600-1000 words covering market dynamics, competitive "
            "landscape, and industry trends)"
        ),
        summary="Key market insights and competitive positioning",
        key_metrics={
            "market_size": "estimated size",
            "market_growth_rate": "percentage",
            "market_share": "percentage or position",
            "competitive_advantage": "description",
        },
        confidence=0.75,
    ),
    InsightType.COMPETITIVE_ANALYSIS: PromptTemplate(
        task=(
            "Analyze the competitive positioning and competitive strategy based on this "
            "annual report."
        ),
        focus_areas=(
            "Competitive advantages and differentiation",
            "Competitor analysis and benchmarking",
            "Competitive threats and market position",
            "Strategic responses to competition",
            "Competitive moats and barriers to entry",
            "Market share dynamics",
        ),
        title="Competitive Strategy Analysis",
        content=(
            "Detailed competitive analysis (600-1000 words covering competitive positioning, "
            "advantages, and strategic responses)"
        ),
        summary="Key competitive insights and strategic positioning",
        key_metrics={
            "competitive_strength": "Strong/Medium/Weak",
            "market_position": "description",
            "differentiation": "High/Medium/Low",
            "competitive_moat": "description",
        },
        confidence=0.80,
    ),
    InsightType.ESG_ANALYSIS: PromptTemplate(
        task=(
            "Analyze the ESG (Environmental, Social, Governance) performance and commitments "
            "based on this annual report."
        ),
        focus_areas=(
            "Environmental impact and sustainability initiatives",
            "Social responsibility and community engagement",
            "Governance structure and board effectiveness",
            "ESG risks and opportunities",
            "Sustainability goals and progress",
            "Stakeholder engagement and value creation",
        ),
        title="ESG Performance Analysis",
        content=(
            "Detailed ESG analysis (600-1000 words covering environmental, social, and "
            "governance aspects with specific initiatives and metrics)"
        ),
        summary="Key ESG highlights and sustainability commitments",
        key_metrics={
            "esg_maturity": "Advanced/Developing/Basic",
            "sustainability_goals": "description",
            "governance_rating": "Strong/Medium/Weak",
            "social_impact": "description",
        },
        confidence=0.70,
    ),
}

FALLBACK_TYPE = InsightType.BUSINESS_INSIGHTS


def resolve_template(insight_type: InsightType | str) -> PromptTemplate:
    """Template for `insight_type`; unknown types get the business insights one."""
    try:
        return TEMPLATES[InsightType(insight_type)]
    except (ValueError, KeyError):
        return TEMPLATES[FALLBACK_TYPE]


def build_prompt(
    insight_type: InsightType | str,
    text: str,
    company_name: str,
    industry: str,
    year: int,
) -> str:
    """Render the prompt for one insight type. Pure and deterministic."""
    template = resolve_template(insight_type)
    focus = "\n".join(f"- {area}" for area in template.focus_areas)
    example = json.dumps(template.example(), indent=2, ensure_ascii=False)

    return (
        f"I need you to analyze an annual report for {company_name} ({industry} industry) "
        f"from {year}. Please provide a thorough analysis and respond in the specified "
        f"JSON format.\n"
        f"\n"
        f"**Task:** {template.task}\n"
        f"\n"
        f"**Focus Areas:**\n"
        f"{focus}\n"
        f"\n"
        f"**Required JSON Response Format:**\n"
        f"```json\n"
        f"{example}\n"
        f"```\n"
        f"\n"
        f"**Annual Report Content:**\n"
        f"{text}"
    )
